"""Relay collaborator interfaces and the local SQLite relay."""

from .base import Relay, RelaySubscription
from .sqlite_relay import LocalSubscription, SqliteRelay

__all__ = ["LocalSubscription", "Relay", "RelaySubscription", "SqliteRelay"]
