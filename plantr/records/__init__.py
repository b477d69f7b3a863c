"""Record types, validation, tag codec and reconciliation.

Records are the signed, immutable units of the remote log. This package
turns raw records into typed entities and resolves the current value of
each replaceable entity.
"""

from .kinds import (
    Deletion,
    Entity,
    PlantLog,
    PlantPot,
    WeatherReading,
    WeatherStation,
    decode_record,
)
from .reconciler import Reconciler, latest, newest_first
from .record import (
    DELETION_KIND,
    PLANT_LOG_KIND,
    PLANT_POT_KIND,
    PLANT_POT_KIND_V2,
    WEATHER_READING_KIND,
    WEATHER_STATION_KIND,
    Coordinate,
    Filter,
    Record,
    UnsignedRecord,
    compute_record_id,
)
from .tags import Task, build_plant_pot_tags, decode_tasks, encode_tasks, first_tag
from .validator import filter_valid, parse_record, validate

__all__ = [
    "Coordinate",
    "DELETION_KIND",
    "Deletion",
    "Entity",
    "Filter",
    "PLANT_LOG_KIND",
    "PLANT_POT_KIND",
    "PLANT_POT_KIND_V2",
    "PlantLog",
    "PlantPot",
    "Reconciler",
    "Record",
    "Task",
    "UnsignedRecord",
    "WEATHER_READING_KIND",
    "WEATHER_STATION_KIND",
    "WeatherReading",
    "WeatherStation",
    "build_plant_pot_tags",
    "compute_record_id",
    "decode_record",
    "decode_tasks",
    "encode_tasks",
    "filter_valid",
    "first_tag",
    "latest",
    "newest_first",
    "parse_record",
    "validate",
]
