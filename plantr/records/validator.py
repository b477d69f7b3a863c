"""Shape validation for records arriving from a relay.

Validation is a pure predicate. Callers drop records that fail it; a relay
returning junk is a data hygiene problem, not a user facing error.
"""

import logging
from typing import Any, Callable

from jsonschema import Draft7Validator

from ..errors import ValidationError
from .record import (
    DELETION_KIND,
    PLANT_LOG_KIND,
    PLANT_POT_KIND,
    PLANT_POT_KIND_V2,
    WEATHER_READING_KIND,
    WEATHER_STATION_KIND,
    Record,
)

logger = logging.getLogger(__name__)

HEX64 = "^[0-9a-f]{64}$"

RECORD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "pubkey", "created_at", "kind", "tags", "content", "sig"],
    "properties": {
        "id": {"type": "string", "pattern": HEX64},
        "pubkey": {"type": "string", "pattern": HEX64},
        "created_at": {"type": "integer", "minimum": 0},
        "kind": {"type": "integer", "minimum": 0, "maximum": 65535},
        "tags": {
            "type": "array",
            "items": {
                "type": "array",
                "minItems": 1,
                "items": {"type": "string"},
            },
        },
        "content": {"type": "string"},
        "sig": {"type": "string"},
    },
}

_record_validator = Draft7Validator(RECORD_SCHEMA)


def wire_errors(data: Any) -> list[str]:
    """List JSON-schema violations of a raw wire record."""
    errors = []
    for error in _record_validator.iter_errors(data):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def parse_record(data: Any) -> Record | None:
    """Parse a raw wire dictionary, or return None if its shape is wrong."""
    errors = wire_errors(data)
    if errors:
        logger.debug(f"Dropping malformed wire record: {'; '.join(errors)}")
        return None
    return Record.from_dict(data)


def _has(record: Record, name: str) -> bool:
    return bool(record.first_tag(name))


def _plant_pot_strict(record: Record) -> bool:
    return _has(record, "d") and _has(record, "p") and bool(record.content)


def _plant_pot_permissive(record: Record) -> bool:
    return _has(record, "d")


def _plant_log(record: Record) -> bool:
    return _has(record, "a")


def _weather_station(record: Record) -> bool:
    return _has(record, "name")


def _weather_reading(record: Record) -> bool:
    return True


def _deletion(record: Record) -> bool:
    return _has(record, "e") or _has(record, "a")


_CONTRACTS: dict[int, Callable[[Record], bool]] = {
    PLANT_POT_KIND: _plant_pot_strict,
    PLANT_POT_KIND_V2: _plant_pot_strict,
    PLANT_LOG_KIND: _plant_log,
    WEATHER_STATION_KIND: _weather_station,
    WEATHER_READING_KIND: _weather_reading,
    DELETION_KIND: _deletion,
}


def validate(record: Record, expected_kind: int, strict: bool = True) -> bool:
    """Check a record against the contract of ``expected_kind``.

    Args:
        record: The record to check.
        expected_kind: Kind the caller asked the relay for.
        strict: For plant pots, also require the ``p`` tag and a payload.
            The permissive variant only requires ``d``.

    Returns:
        True if the record may be used, False otherwise. Never raises.
    """
    if record.kind != expected_kind:
        return False

    contract = _CONTRACTS.get(expected_kind)
    if contract is None:
        return False

    if not strict and expected_kind in (PLANT_POT_KIND, PLANT_POT_KIND_V2):
        contract = _plant_pot_permissive

    if wire_errors(record.to_dict()):
        return False

    return contract(record)


def filter_valid(
    records: list[Record], expected_kind: int, strict: bool = True
) -> list[Record]:
    """Keep only the records that pass ``validate``."""
    valid = []
    for record in records:
        if validate(record, expected_kind, strict):
            valid.append(record)
        else:
            logger.debug(f"Dropping invalid kind {record.kind} record {record.id}")
    return valid


def require_valid(record: Record, expected_kind: int, strict: bool = True) -> Record:
    """Like ``validate`` but raises ``ValidationError`` on failure."""
    if not validate(record, expected_kind, strict):
        raise ValidationError(context=f"record {record.id} as kind {expected_kind}")
    return record
