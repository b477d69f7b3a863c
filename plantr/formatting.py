"""Presentation helpers shared by the command line and host applications."""

import time

from .bech32 import AddressPointer, naddr_encode
from .records.kinds import PlantPot
from .records.tags import Task


def format_duration(seconds: int) -> str:
    """Format seconds as ``45s``, ``2m`` or ``2m 5s``."""
    if seconds < 60:
        return f"{seconds}s"

    minutes, remaining = divmod(seconds, 60)
    if remaining == 0:
        return f"{minutes}m"
    return f"{minutes}m {remaining}s"


def format_relative_time(timestamp: int, now: int | None = None) -> str:
    """Format a unix timestamp relative to ``now``."""
    if now is None:
        now = int(time.time())
    diff = now - timestamp

    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


def format_task(task: Task) -> str:
    try:
        return f"{task.type} for {format_duration(task.seconds)}"
    except ValueError:
        return f"{task.type} for {task.duration}"


def plant_pot_naddr(pot: PlantPot, relays: list[str] | None = None) -> str:
    """Shareable ``naddr`` pointing at the device-authored pot record."""
    return naddr_encode(
        AddressPointer(
            identifier=pot.identifier,
            pubkey=pot.device_pubkey,
            kind=pot.kind,
            relays=tuple(relays or ()),
        )
    )
