"""Typed read and write paths for each entity kind.

Reads go relay -> validator -> reconciler -> cache. Writes go
domain value -> tag codec -> signer -> relay. The cache is only touched
after the relay has answered: a failed or timed out call leaves it as it was,
and writes invalidate entries instead of updating them optimistically.
"""

import dataclasses
import logging
import re
import time
import uuid
from typing import Callable, Iterable

from .cache import (
    Cache,
    plant_logs_key,
    plant_pot_key,
    plant_pots_key,
    weather_reading_key,
    weather_stations_key,
)
from .cancel import CancelToken
from .config import Config
from .errors import (
    NotFoundError,
    OperationCancelled,
    PlantrError,
    PublishError,
    RelayTimeoutError,
    ValidationError,
)
from .records.kinds import PlantLog, PlantPot, WeatherReading, WeatherStation
from .records.reconciler import Reconciler, latest, newest_first
from .records.record import (
    DELETION_KIND,
    WEATHER_READING_KIND,
    WEATHER_STATION_KIND,
    Coordinate,
    Filter,
    Record,
    UnsignedRecord,
    normalize_tags,
)
from .records.tags import Task, build_plant_pot_tags, encode_tasks
from .records.validator import filter_valid
from .relay.base import Relay
from .secret_codec import SecretCodec, hex_to_nsec
from .signer import Signer

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

DURATION_RE = re.compile(r"[0-9]+")


def _now() -> int:
    return int(time.time())


def log_identities(record: Record) -> set[str]:
    """A log may be deleted by its device or by the owner it is addressed to."""
    identities = {record.pubkey}
    address = record.first_tag("a")
    coordinate = Coordinate.parse(address) if address else None
    if coordinate is not None:
        identities.add(coordinate.pubkey)
    return identities


def station_coordinate(record: Record) -> Coordinate:
    """Station metadata is replaceable per author."""
    return Coordinate(record.kind, record.pubkey, "")


class EntityStore:
    """Shared query, sign and publish plumbing."""

    def __init__(
        self,
        relay: Relay,
        cache: Cache,
        config: Config | None = None,
        clock: Clock | None = None,
    ):
        self._relay = relay
        self._cache = cache
        self._config = config or Config()
        self._clock = clock or _now
        self._timeout = self._config.relay.query_timeout_seconds

    async def _query(
        self, filters: list[Filter], token: CancelToken | None = None
    ) -> list[Record]:
        """Query the relay under the read deadline.

        Raises:
            RelayTimeoutError: No answer before the deadline.
            OperationCancelled: ``token`` was cancelled.
        """
        scoped = (token or CancelToken()).with_timeout(self._timeout)
        return await scoped.run(self._relay.query(filters))

    async def _sign(self, signer: Signer, unsigned: UnsignedRecord) -> Record:
        try:
            return await signer.sign(unsigned)
        except PlantrError:
            raise
        except Exception as e:
            raise PublishError("Signing failed", context=str(e)) from e

    async def _publish(self, record: Record, token: CancelToken | None = None) -> None:
        scoped = (token or CancelToken()).with_timeout(self._timeout)
        try:
            await scoped.run(self._relay.publish(record))
        except (PublishError, OperationCancelled):
            raise
        except RelayTimeoutError as e:
            raise PublishError("Relay did not confirm the write", context=record.id) from e
        except Exception as e:
            raise PublishError("Relay write failed", context=str(e)) from e

        logger.info(f"Published kind {record.kind} record {record.id}")


class PlantPotStore(EntityStore):
    """Plant pots owned by one identity."""

    def __init__(
        self,
        relay: Relay,
        cache: Cache,
        owner: Signer,
        secrets: SecretCodec,
        config: Config | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(relay, cache, config, clock)
        self._owner = owner
        self._secrets = secrets
        self._reconciler = Reconciler()
        self.kind = self._config.schema.plant_pot_kind
        self._strict = self._config.schema.strict_validation

    @property
    def owner_pubkey(self) -> str:
        return self._owner.pubkey

    def pot_filter(self, identifier: str | None = None) -> Filter:
        tags = {"p": (self.owner_pubkey,)}
        if identifier is not None:
            tags["d"] = (identifier,)
        return Filter(kinds=(self.kind,), tags=tags)

    def deletion_filter(self) -> Filter:
        return Filter(kinds=(DELETION_KIND,), authors=(self.owner_pubkey,))

    async def _fetch(
        self, identifier: str | None = None, token: CancelToken | None = None
    ) -> list[PlantPot]:
        records = await self._query(
            [self.pot_filter(identifier), self.deletion_filter()], token
        )

        pots = filter_valid(
            [r for r in records if r.kind == self.kind], self.kind, self._strict
        )
        deletions = filter_valid(
            [r for r in records if r.kind == DELETION_KIND and r.pubkey == self.owner_pubkey],
            DELETION_KIND,
        )

        current = []
        for record in self._reconciler.reconcile(pots, deletions):
            pot = PlantPot.from_record(record)
            # The relay is untrusted: it may hand back pots of other owners
            if pot.owner != self.owner_pubkey:
                continue
            if identifier is not None and pot.identifier != identifier:
                continue
            current.append(pot)
        return current

    async def list_pots(self, token: CancelToken | None = None) -> list[PlantPot]:
        """Fetch every current plant pot of the owner, newest first."""
        pots = await self._fetch(token=token)

        self._cache.set(plant_pots_key(self.owner_pubkey), tuple(pots))
        for pot in pots:
            self._cache.set(plant_pot_key(self.owner_pubkey, pot.identifier), pot)
        return pots

    async def get_pot(
        self, identifier: str, token: CancelToken | None = None
    ) -> PlantPot | None:
        """Fetch the current plant pot with ``identifier``, if any."""
        pots = await self._fetch(identifier, token)
        pot = pots[0] if pots else None
        self._cache.set(plant_pot_key(self.owner_pubkey, identifier), pot)
        return pot

    async def cached_pots(self, token: CancelToken | None = None) -> list[PlantPot]:
        """Read through the cache."""
        cached = self._cache.get(plant_pots_key(self.owner_pubkey))
        if cached is not None:
            return list(cached)
        return await self.list_pots(token)

    async def cached_pot(
        self, identifier: str, token: CancelToken | None = None
    ) -> PlantPot | None:
        key = plant_pot_key(self.owner_pubkey, identifier)
        if self._cache.is_fresh(key):
            return self._cache.get(key)
        return await self.get_pot(identifier, token)

    async def require_pot(
        self, identifier: str, token: CancelToken | None = None
    ) -> PlantPot:
        pot = await self.get_pot(identifier, token)
        if pot is None:
            raise NotFoundError(context=f"plant pot {identifier}")
        return pot

    def _invalidate(self, identifier: str) -> None:
        self._cache.invalidate(plant_pots_key(self.owner_pubkey))
        self._cache.invalidate(plant_pot_key(self.owner_pubkey, identifier))

    async def create_pot(
        self,
        identifier: str,
        name: str | None = None,
        weather_station: str | None = None,
        token: CancelToken | None = None,
    ) -> PlantPot:
        """Create a plant pot with a fresh device identity.

        The device secret is encrypted to the owner and the record is signed
        by the device itself.
        """
        identifier = identifier.strip()
        if not identifier:
            raise ValidationError("Plant pot identifier must not be empty")

        secret = self._secrets.generate_secret()
        device = self._secrets.signer_for(secret)
        ciphertext = await self._secrets.encrypt_device_secret(self._owner, secret)

        unsigned = UnsignedRecord(
            kind=self.kind,
            created_at=self._clock(),
            tags=build_plant_pot_tags(
                identifier,
                self.owner_pubkey,
                name=name,
                weather_station=weather_station,
                client=self._config.identity.client,
            ),
            content=ciphertext,
            pubkey=device.pubkey,
        )
        record = await self._sign(device, unsigned)
        await self._publish(record, token)

        self._invalidate(identifier)
        logger.info(f"Created plant pot {identifier} for device {device.pubkey[:8]}")
        return PlantPot.from_record(record)

    async def _republish(
        self,
        identifier: str,
        mutate: Callable[[PlantPot], PlantPot],
        token: CancelToken | None = None,
    ) -> PlantPot:
        """Read the current pot, apply ``mutate`` and publish the full record.

        There is no partial update on the wire: every mutation rewrites the
        complete tag set, signed by the device.
        """
        pot = await self.require_pot(identifier, token)
        device = await self._secrets.device_signer(self._owner, pot)
        updated = mutate(pot)

        unsigned = UnsignedRecord(
            kind=pot.kind,
            # Strictly newer than the version it replaces, even on clock skew
            created_at=max(self._clock(), pot.created_at + 1),
            tags=build_plant_pot_tags(
                pot.identifier,
                pot.owner,
                tasks=updated.tasks,
                name=updated.name,
                weather_station=updated.weather_station,
                client=self._config.identity.client,
            ),
            content=pot.encrypted_secret,
            pubkey=device.pubkey,
        )
        record = await self._sign(device, unsigned)
        await self._publish(record, token)

        self._invalidate(identifier)
        return PlantPot.from_record(record)

    async def add_task(
        self, identifier: str, task: Task, token: CancelToken | None = None
    ) -> PlantPot:
        """Append a task to the end of the pot's queue."""
        if not task.type or not DURATION_RE.fullmatch(task.duration):
            raise ValidationError(context=f"invalid task {task}")
        return await self._republish(
            identifier,
            lambda pot: dataclasses.replace(pot, tasks=pot.tasks + (task,)),
            token,
        )

    async def add_water_task(
        self, identifier: str, seconds: int, token: CancelToken | None = None
    ) -> PlantPot:
        if seconds <= 0:
            raise ValidationError("Watering duration must be positive")
        return await self.add_task(identifier, Task("water", str(seconds)), token)

    async def remove_task(
        self, identifier: str, index: int, token: CancelToken | None = None
    ) -> PlantPot:
        """Remove the task at ``index``, keeping the order of the rest."""

        def drop(pot: PlantPot) -> PlantPot:
            if not 0 <= index < len(pot.tasks):
                raise NotFoundError(context=f"no task at position {index} of {identifier}")
            return dataclasses.replace(pot, tasks=pot.tasks[:index] + pot.tasks[index + 1:])

        return await self._republish(identifier, drop, token)

    async def rename(
        self, identifier: str, name: str | None, token: CancelToken | None = None
    ) -> PlantPot:
        name = name.strip() if name else None
        return await self._republish(
            identifier, lambda pot: dataclasses.replace(pot, name=name or None), token
        )

    async def set_weather_station(
        self, identifier: str, station: str | None, token: CancelToken | None = None
    ) -> PlantPot:
        """Assign a weather station, or clear it with None."""
        return await self._republish(
            identifier,
            lambda pot: dataclasses.replace(pot, weather_station=station or None),
            token,
        )

    async def delete_pot(self, identifier: str, token: CancelToken | None = None) -> Record:
        """Publish an owner-signed tombstone for the pot and all its versions."""
        pot = await self.require_pot(identifier, token)

        unsigned = UnsignedRecord(
            kind=DELETION_KIND,
            created_at=self._clock(),
            tags=normalize_tags(
                [
                    ("e", pot.record.id),
                    ("a", str(pot.coordinate)),
                    ("a", str(pot.device_coordinate)),
                ]
            ),
            content="Deleting plant pot",
            pubkey=self.owner_pubkey,
        )
        record = await self._sign(self._owner, unsigned)
        await self._publish(record, token)

        self._invalidate(identifier)
        self._cache.invalidate_prefix(("plant-logs", self.owner_pubkey, identifier))
        logger.info(f"Deleted plant pot {identifier}")
        return record

    async def device_secret(self, identifier: str, token: CancelToken | None = None) -> str:
        """Decrypt the device secret of a pot as lowercase hex."""
        pot = await self.require_pot(identifier, token)
        return await self._secrets.decrypt_device_secret(self._owner, pot)

    async def device_nsec(self, identifier: str, token: CancelToken | None = None) -> str:
        return hex_to_nsec(await self.device_secret(identifier, token))


class PlantLogStore(EntityStore):
    """Completion logs published by devices."""

    def __init__(
        self,
        relay: Relay,
        cache: Cache,
        owner_pubkey: str,
        config: Config | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(relay, cache, config, clock)
        self.owner_pubkey = owner_pubkey
        self.kind = self._config.schema.plant_log_kind
        self.pot_kind = self._config.schema.plant_pot_kind
        self._reconciler = Reconciler(identities_of=log_identities)

    def address(self, identifier: str) -> str:
        return str(Coordinate(self.pot_kind, self.owner_pubkey, identifier))

    async def list_logs(
        self, identifier: str, token: CancelToken | None = None
    ) -> list[PlantLog]:
        """Fetch the completion logs of one plant pot, newest first."""
        address = self.address(identifier)
        records = await self._query(
            [
                Filter(kinds=(self.kind,), tags={"a": (address,)}),
                Filter(kinds=(DELETION_KIND,), authors=(self.owner_pubkey,)),
            ],
            token,
        )

        logs = [
            r
            for r in filter_valid([r for r in records if r.kind == self.kind], self.kind)
            if r.first_tag("a") == address
        ]
        deletions = filter_valid(
            [r for r in records if r.kind == DELETION_KIND], DELETION_KIND
        )

        result = [
            PlantLog.from_record(r)
            for r in newest_first(self._reconciler.apply_deletions(logs, deletions))
        ]
        self._cache.set(plant_logs_key(self.owner_pubkey, identifier), tuple(result))
        return result

    async def cached_logs(
        self, identifier: str, token: CancelToken | None = None
    ) -> list[PlantLog]:
        cached = self._cache.get(plant_logs_key(self.owner_pubkey, identifier))
        if cached is not None:
            return list(cached)
        return await self.list_logs(identifier, token)

    async def publish_completion(
        self,
        device: Signer,
        pot: PlantPot,
        tasks: Iterable[Task],
        token: CancelToken | None = None,
    ) -> PlantLog:
        """Record, as the device, that ``tasks`` were carried out."""
        tags = [("d", uuid.uuid4().hex), ("a", str(pot.coordinate))]
        tags.extend(encode_tasks(tasks))

        unsigned = UnsignedRecord(
            kind=self.kind,
            created_at=self._clock(),
            tags=normalize_tags(tags),
            content="",
            pubkey=device.pubkey,
        )
        record = await self._sign(device, unsigned)
        await self._publish(record, token)

        self._cache.invalidate(plant_logs_key(pot.owner, pot.identifier))
        return PlantLog.from_record(record)


class WeatherStore(EntityStore):
    """Read-only access to weather stations and their readings."""

    def __init__(
        self,
        relay: Relay,
        cache: Cache,
        config: Config | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(relay, cache, config, clock)
        self._reconciler = Reconciler(coordinate_of=station_coordinate)

    async def list_stations(self, token: CancelToken | None = None) -> list[WeatherStation]:
        """Fetch known stations, newest first, one per station identity."""
        records = await self._query(
            [
                Filter(
                    kinds=(WEATHER_STATION_KIND,),
                    limit=self._config.weather.station_limit,
                )
            ],
            token,
        )
        valid = filter_valid(records, WEATHER_STATION_KIND)
        stations = [
            WeatherStation.from_record(r) for r in self._reconciler.reconcile(valid)
        ]
        self._cache.set(weather_stations_key(), tuple(stations))
        return stations

    async def latest_reading(
        self, station: str, token: CancelToken | None = None
    ) -> WeatherReading | None:
        """Fetch the most recent reading authored by ``station``."""
        records = await self._query(
            [Filter(kinds=(WEATHER_READING_KIND,), authors=(station,), limit=1)],
            token,
        )
        valid = [r for r in filter_valid(records, WEATHER_READING_KIND) if r.pubkey == station]
        record = latest(valid)
        reading = WeatherReading.from_record(record) if record else None
        self._cache.set(weather_reading_key(station), reading)
        return reading
