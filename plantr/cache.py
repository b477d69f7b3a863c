"""Keyed snapshot cache consumed by the presentation layer.

One ``Cache`` is created per session and passed to the stores and the
subscription manager. Each key holds an immutable snapshot; writes replace
the whole entry, so the last writer wins and readers never see a partial
value.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable

logger = logging.getLogger(__name__)

CacheKey = tuple[str, ...]
CacheListener = Callable[[CacheKey], None]


def plant_pots_key(owner: str) -> CacheKey:
    return ("plant-pots", owner)


def plant_pot_key(owner: str, identifier: str) -> CacheKey:
    return ("plant-pot", owner, identifier)


def plant_logs_key(owner: str, identifier: str) -> CacheKey:
    return ("plant-logs", owner, identifier)


def weather_stations_key() -> CacheKey:
    return ("weather-stations",)


def weather_reading_key(station: str) -> CacheKey:
    return ("weather-readings", station)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    updated_at: float
    stale: bool = False


class Cache:
    """Snapshot store with explicit invalidation."""

    def __init__(self):
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._listeners: list[CacheListener] = []
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Any | None:
        """Return the value for ``key`` if present and not invalidated."""
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return None
        return entry.value

    def peek(self, key: CacheKey) -> CacheEntry | None:
        """Return the raw entry, stale or not."""
        return self._entries.get(key)

    def is_fresh(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.stale

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, updated_at=time.time())
        self._notify(key)

    def invalidate(self, key: CacheKey) -> bool:
        """Mark ``key`` stale so the next read goes to the relay.

        Returns:
            True if an entry existed.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            self._entries[key] = replace(entry, stale=True)
        logger.debug(f"Invalidated cache key {key}")
        self._notify(key)
        return True

    def invalidate_prefix(self, prefix: CacheKey) -> int:
        """Invalidate every key starting with ``prefix``."""
        size = len(prefix)
        with self._lock:
            keys = [key for key in self._entries if key[:size] == prefix]
        return sum(1 for key in keys if self.invalidate(key))

    def remove(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)
        self._notify(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return list(self._entries)

    def add_listener(self, listener: CacheListener) -> Callable[[], None]:
        """Register a callback run after every write or invalidation.

        Returns:
            A function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _notify(self, key: CacheKey) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key)
            except Exception as e:
                logger.error(f"Cache listener failed for {key}: {e}", exc_info=True)
