"""SQLite-backed relay holding an append-only record log.

Serves as the offline mirror behind the command line and as an in-process
relay for tests (``":memory:"``). Records are stored exactly as published;
replacement and deletion are resolved by the client, never here.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import PublishError
from ..records.record import Filter, Record, compute_record_id
from ..records.validator import parse_record, wire_errors
from .base import Relay, RelaySubscription

logger = logging.getLogger(__name__)

RELAY_SCHEMA = """
-- Append-only record log
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    pubkey TEXT NOT NULL,
    kind INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    tags TEXT NOT NULL,
    content TEXT NOT NULL,
    sig TEXT NOT NULL,
    received_at TEXT NOT NULL
);

-- Single-letter tag index for #x filters
CREATE TABLE IF NOT EXISTS record_tags (
    record_id TEXT NOT NULL,
    name TEXT NOT NULL,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_kind ON records(kind);
CREATE INDEX IF NOT EXISTS idx_records_pubkey ON records(pubkey);
CREATE INDEX IF NOT EXISTS idx_records_created ON records(created_at);
CREATE INDEX IF NOT EXISTS idx_record_tags ON record_tags(name, value);
"""


class LocalSubscription(RelaySubscription):
    """Live subscription fed by ``SqliteRelay.publish``."""

    def __init__(self, relay: "SqliteRelay", filters: list[Filter]):
        self._relay = relay
        self.filters = filters
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Record | None] = asyncio.Queue()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, record: Record) -> bool:
        return any(f.matches(record) for f in self.filters)

    def deliver(self, record: Record) -> None:
        if self._closed or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, record)

    async def next_record(self) -> Record | None:
        if self._closed and self._queue.empty():
            return None
        record = await self._queue.get()
        if record is None or self._closed:
            return None
        return record

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._relay._remove_subscription(self)
        if not self._loop.is_closed():
            # Wake a pending next_record()
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)


class SqliteRelay(Relay):
    """Relay implementation over a local SQLite database."""

    def __init__(self, db_path: str | Path, url: str = "local"):
        """Initialize the relay.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            url: Relay URL reported in relay hints.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self._url = url
        self._conn: sqlite3.Connection | None = None
        self._subscriptions: list[LocalSubscription] = []
        self._subs_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(RELAY_SCHEMA)
        self._conn.commit()

        logger.info(f"SqliteRelay connected to {self.db_path}")

    async def close(self) -> None:
        """Close every subscription and the database connection."""
        with self._subs_lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()

        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record.from_dict(
            {
                "id": row["id"],
                "pubkey": row["pubkey"],
                "created_at": row["created_at"],
                "kind": row["kind"],
                "tags": json.loads(row["tags"]),
                "content": row["content"],
                "sig": row["sig"],
            }
        )

    def _query_filter(self, conn: sqlite3.Connection, flt: Filter) -> list[Record]:
        clauses = []
        params: list[Any] = []

        def in_clause(column: str, values: tuple) -> None:
            clauses.append(f"{column} IN ({','.join('?' * len(values))})")
            params.extend(values)

        if flt.ids:
            in_clause("id", flt.ids)
        if flt.kinds:
            in_clause("kind", flt.kinds)
        if flt.authors:
            in_clause("pubkey", flt.authors)
        if flt.since is not None:
            clauses.append("created_at >= ?")
            params.append(flt.since)
        if flt.until is not None:
            clauses.append("created_at <= ?")
            params.append(flt.until)
        for name, values in flt.tags.items():
            if not values:
                return []
            clauses.append(
                "id IN (SELECT record_id FROM record_tags "
                f"WHERE name = ? AND value IN ({','.join('?' * len(values))}))"
            )
            params.append(name)
            params.extend(values)

        sql = "SELECT * FROM records"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id ASC"
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(flt.limit)

        return [self._row_to_record(row) for row in conn.execute(sql, params)]

    async def query(self, filters: list[Filter]) -> list[Record]:
        conn = self._ensure_connected()

        seen: dict[str, Record] = {}
        for flt in filters:
            for record in self._query_filter(conn, flt):
                seen.setdefault(record.id, record)

        logger.debug(f"Query matched {len(seen)} records")
        return list(seen.values())

    def store(self, record: Record) -> bool:
        """Insert a record. Returns False if it was already stored.

        Raises:
            PublishError: If the record id does not match its contents.
        """
        errors = wire_errors(record.to_dict())
        if errors:
            raise PublishError("Record rejected by relay", context="; ".join(errors))

        expected = compute_record_id(
            record.pubkey, record.created_at, record.kind, record.tags, record.content
        )
        if expected != record.id:
            raise PublishError("Record rejected by relay", context=f"id mismatch for {record.id}")

        conn = self._ensure_connected()

        existing = conn.execute("SELECT 1 FROM records WHERE id = ?", (record.id,)).fetchone()
        if existing:
            return False

        conn.execute(
            """
            INSERT INTO records (
                id, pubkey, kind, created_at, tags, content, sig, received_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.pubkey,
                record.kind,
                record.created_at,
                json.dumps([list(t) for t in record.tags]),
                record.content,
                record.sig,
                datetime.now().isoformat(),
            ),
        )
        conn.executemany(
            "INSERT INTO record_tags (record_id, name, value) VALUES (?, ?, ?)",
            [
                (record.id, tag[0], tag[1])
                for tag in record.tags
                if len(tag) >= 2 and len(tag[0]) == 1
            ],
        )
        conn.commit()
        return True

    async def publish(self, record: Record) -> None:
        if not self.store(record):
            logger.debug(f"Duplicate record {record.id} ignored")
            return

        logger.debug(f"Stored kind {record.kind} record {record.id}")

        with self._subs_lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            if subscription.matches(record):
                subscription.deliver(record)

    def subscribe(self, filters: list[Filter]) -> LocalSubscription:
        subscription = LocalSubscription(self, filters)
        with self._subs_lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: LocalSubscription) -> None:
        with self._subs_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscription_count(self) -> int:
        with self._subs_lock:
            return len(self._subscriptions)

    async def import_jsonl(self, path: str | Path) -> int:
        """Load records from a JSON-lines dump.

        Malformed lines are skipped.

        Returns:
            Number of new records stored.
        """
        added = 0
        with open(Path(path).expanduser()) as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = parse_record(json.loads(line))
                except json.JSONDecodeError:
                    record = None
                if record is None:
                    logger.warning(f"Skipping malformed record on line {line_no}")
                    continue
                try:
                    if self.store(record):
                        added += 1
                except PublishError as e:
                    logger.warning(f"Skipping line {line_no}: {e}")

        logger.info(f"Imported {added} new records from {path}")
        return added

    def get_stats(self) -> dict[str, Any]:
        """Get relay statistics."""
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"url": self._url}

        cursor = conn.execute("SELECT COUNT(*) FROM records")
        stats["total_records"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT kind, COUNT(*) FROM records GROUP BY kind")
        stats["records_by_kind"] = {row[0]: row[1] for row in cursor}

        stats["subscriptions"] = self.subscription_count

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
