"""Typed views over the five record kinds the engine understands."""

from dataclasses import dataclass
from typing import Union

from ..errors import ValidationError
from .record import (
    DELETION_KIND,
    PLANT_LOG_KIND,
    PLANT_POT_KIND,
    PLANT_POT_KIND_V2,
    WEATHER_READING_KIND,
    WEATHER_STATION_KIND,
    Coordinate,
    Record,
)
from .tags import Task, decode_tasks

PLANT_POT_KINDS = (PLANT_POT_KIND, PLANT_POT_KIND_V2)


@dataclass(frozen=True)
class PlantPot:
    """Current state of a plant pot.

    The record is signed by the device; ``owner`` is the human in the ``p`` tag.
    """

    record: Record
    identifier: str
    owner: str
    tasks: tuple[Task, ...]
    name: str | None = None
    weather_station: str | None = None
    client: str | None = None

    @property
    def device_pubkey(self) -> str:
        return self.record.pubkey

    @property
    def encrypted_secret(self) -> str:
        return self.record.content

    @property
    def created_at(self) -> int:
        return self.record.created_at

    @property
    def kind(self) -> int:
        return self.record.kind

    @property
    def coordinate(self) -> Coordinate:
        """Owner-keyed coordinate used for reconciliation and log addresses."""
        return Coordinate(self.record.kind, self.owner, self.identifier)

    @property
    def device_coordinate(self) -> Coordinate:
        return Coordinate(self.record.kind, self.record.pubkey, self.identifier)

    @property
    def display_name(self) -> str:
        return self.name or self.identifier

    @classmethod
    def from_record(cls, record: Record) -> "PlantPot":
        if record.kind not in PLANT_POT_KINDS:
            raise ValidationError(context=f"kind {record.kind} is not a plant pot")
        identifier = record.first_tag("d")
        if not identifier:
            raise ValidationError(context=f"plant pot {record.id} has no d tag")
        return cls(
            record=record,
            identifier=identifier,
            # Permissive mode admits pots without p; those belong to their author
            owner=record.first_tag("p") or record.pubkey,
            tasks=tuple(decode_tasks(record.tags)),
            name=record.first_tag("name"),
            weather_station=record.first_tag("weather_station"),
            client=record.first_tag("client"),
        )


@dataclass(frozen=True)
class PlantLog:
    """A device's append-only record of completed tasks."""

    record: Record
    address: str
    tasks: tuple[Task, ...]

    @property
    def created_at(self) -> int:
        return self.record.created_at

    @property
    def device_pubkey(self) -> str:
        return self.record.pubkey

    @property
    def coordinate(self) -> Coordinate | None:
        return Coordinate.parse(self.address)

    @property
    def plant_identifier(self) -> str | None:
        coordinate = self.coordinate
        return coordinate.identifier if coordinate else None

    @classmethod
    def from_record(cls, record: Record) -> "PlantLog":
        if record.kind != PLANT_LOG_KIND:
            raise ValidationError(context=f"kind {record.kind} is not a plant log")
        address = record.first_tag("a")
        if not address:
            raise ValidationError(context=f"plant log {record.id} has no a tag")
        return cls(record=record, address=address, tasks=tuple(decode_tasks(record.tags)))


@dataclass(frozen=True)
class Deletion:
    """A tombstone for record ids and/or coordinates."""

    record: Record
    record_ids: frozenset[str]
    coordinates: frozenset[str]

    @property
    def author(self) -> str:
        return self.record.pubkey

    @classmethod
    def from_record(cls, record: Record) -> "Deletion":
        if record.kind != DELETION_KIND:
            raise ValidationError(context=f"kind {record.kind} is not a deletion")
        return cls(
            record=record,
            record_ids=frozenset(record.tag_values("e")),
            coordinates=frozenset(record.tag_values("a")),
        )


@dataclass(frozen=True)
class WeatherStation:
    pubkey: str
    name: str
    created_at: int
    description: str | None = None
    geohash: str | None = None

    @classmethod
    def from_record(cls, record: Record) -> "WeatherStation":
        if record.kind != WEATHER_STATION_KIND:
            raise ValidationError(context=f"kind {record.kind} is not a weather station")
        name = record.first_tag("name")
        if not name:
            raise ValidationError(context=f"weather station {record.id} has no name")
        return cls(
            pubkey=record.pubkey,
            name=name,
            created_at=record.created_at,
            description=record.first_tag("description"),
            geohash=record.first_tag("g"),
        )


@dataclass(frozen=True)
class WeatherReading:
    pubkey: str
    created_at: int
    temperature: str | None = None
    humidity: str | None = None

    @classmethod
    def from_record(cls, record: Record) -> "WeatherReading":
        if record.kind != WEATHER_READING_KIND:
            raise ValidationError(context=f"kind {record.kind} is not a weather reading")
        return cls(
            pubkey=record.pubkey,
            created_at=record.created_at,
            temperature=record.first_tag("temp") or None,
            humidity=record.first_tag("humidity") or None,
        )


Entity = Union[PlantPot, PlantLog, Deletion, WeatherStation, WeatherReading]

_DECODERS = {
    PLANT_POT_KIND: PlantPot.from_record,
    PLANT_POT_KIND_V2: PlantPot.from_record,
    PLANT_LOG_KIND: PlantLog.from_record,
    DELETION_KIND: Deletion.from_record,
    WEATHER_STATION_KIND: WeatherStation.from_record,
    WEATHER_READING_KIND: WeatherReading.from_record,
}


def decode_record(record: Record) -> Entity:
    """Decode a record into its typed entity.

    Raises:
        ValidationError: If the kind is unknown or the record is malformed.
    """
    decoder = _DECODERS.get(record.kind)
    if decoder is None:
        raise ValidationError(context=f"unknown kind {record.kind}")
    return decoder(record)
