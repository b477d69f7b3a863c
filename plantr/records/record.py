"""Signed record value types and their wire representation.

A record is the immutable unit of state in the remote log. Entities such as
plant pots are never stored directly; their current value is derived from
the records at their coordinate.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Iterable

# Declared kinds
DELETION_KIND = 5
WEATHER_READING_KIND = 4223
WEATHER_STATION_KIND = 16158
PLANT_POT_KIND = 30000
PLANT_LOG_KIND = 30001
PLANT_POT_KIND_V2 = 34419

Tags = tuple[tuple[str, ...], ...]


def normalize_tags(tags: Iterable[Iterable[Any]]) -> Tags:
    """Freeze a nested tag list into tuples of strings."""
    return tuple(tuple(str(v) for v in tag) for tag in tags)


def serialize_for_id(
    pubkey: str, created_at: int, kind: int, tags: Tags, content: str
) -> str:
    """Canonical serialization hashed to produce a record id."""
    return json.dumps(
        [0, pubkey, created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_record_id(
    pubkey: str, created_at: int, kind: int, tags: Tags, content: str
) -> str:
    data = serialize_for_id(pubkey, created_at, kind, tags, content)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def is_addressable_kind(kind: int) -> bool:
    return 30000 <= kind < 40000


@dataclass(frozen=True)
class Coordinate:
    """Address of a replaceable entity: ``kind:identity:identifier``."""

    kind: int
    pubkey: str
    identifier: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.pubkey}:{self.identifier}"

    @classmethod
    def parse(cls, value: str) -> "Coordinate | None":
        """Parse an address string.

        The identifier is everything after the second colon, so identifiers
        may themselves contain colons.
        """
        parts = value.split(":", 2)
        if len(parts) != 3:
            return None
        kind, pubkey, identifier = parts
        try:
            return cls(int(kind), pubkey, identifier)
        except ValueError:
            return None


@dataclass(frozen=True)
class UnsignedRecord:
    """A composed record waiting for a signer."""

    kind: int
    created_at: int
    tags: Tags
    content: str = ""
    pubkey: str | None = None


@dataclass(frozen=True)
class Record:
    """A signed record as returned by a relay."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags
    content: str
    sig: str

    def first_tag(self, name: str) -> str | None:
        """Value of the first tag called ``name``, if any."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None

    def tag_values(self, name: str) -> list[str]:
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Create from a wire dictionary."""
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            created_at=int(data["created_at"]),
            kind=int(data["kind"]),
            tags=normalize_tags(data.get("tags", [])),
            content=data.get("content", ""),
            sig=data.get("sig", ""),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class Filter:
    """A relay query filter.

    ``tags`` maps a single-letter tag name to accepted values and is sent as
    ``#<name>`` on the wire.
    """

    kinds: tuple[int, ...] = ()
    authors: tuple[str, ...] = ()
    ids: tuple[str, ...] = ()
    tags: dict[str, tuple[str, ...]] = field(default_factory=dict)
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.ids:
            data["ids"] = list(self.ids)
        if self.kinds:
            data["kinds"] = list(self.kinds)
        if self.authors:
            data["authors"] = list(self.authors)
        for name, values in self.tags.items():
            data[f"#{name}"] = list(values)
        if self.since is not None:
            data["since"] = self.since
        if self.until is not None:
            data["until"] = self.until
        if self.limit is not None:
            data["limit"] = self.limit
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Filter":
        tags = {
            key[1:]: tuple(values)
            for key, values in data.items()
            if key.startswith("#")
        }
        return cls(
            kinds=tuple(data.get("kinds", ())),
            authors=tuple(data.get("authors", ())),
            ids=tuple(data.get("ids", ())),
            tags=tags,
            since=data.get("since"),
            until=data.get("until"),
            limit=data.get("limit"),
        )

    def matches(self, record: Record) -> bool:
        """Check a record against every constraint except ``limit``."""
        if self.ids and record.id not in self.ids:
            return False
        if self.kinds and record.kind not in self.kinds:
            return False
        if self.authors and record.pubkey not in self.authors:
            return False
        if self.since is not None and record.created_at < self.since:
            return False
        if self.until is not None and record.created_at > self.until:
            return False
        for name, values in self.tags.items():
            if not set(record.tag_values(name)) & set(values):
                return False
        return True
