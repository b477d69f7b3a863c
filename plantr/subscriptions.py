"""Live subscriptions that keep the cache in step with the relay.

Each ``Subscription`` is a cancellable background task consuming one relay
subscription. Pushed records are re-validated, then handed to listeners;
the ``SubscriptionManager`` registers listeners that invalidate list
entries or write point lookups straight into the cache. There is no
automatic reconnect: once closed, a subscription does no further work.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import AsyncIterator, Callable, Iterable

from .cache import (
    Cache,
    plant_logs_key,
    plant_pot_key,
    plant_pots_key,
    weather_reading_key,
)
from .cancel import CancelToken
from .config import Config
from .errors import ValidationError
from .records.kinds import PlantPot, WeatherReading
from .records.reconciler import Reconciler, recency_key
from .records.record import (
    DELETION_KIND,
    WEATHER_READING_KIND,
    Coordinate,
    Filter,
    Record,
)
from .records.validator import validate
from .relay.base import Relay, RelaySubscription

logger = logging.getLogger(__name__)

RecordListener = Callable[[Record], None]


class SubscriptionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class Subscription:
    """A long-lived query pushing validated records to listeners."""

    def __init__(
        self,
        relay: Relay,
        filters: list[Filter],
        accept: Callable[[Record], bool],
        name: str = "subscription",
        token: CancelToken | None = None,
    ):
        """Initialize the subscription.

        Args:
            relay: Relay to subscribe on.
            filters: Filters scoping the pushed records.
            accept: Predicate run on every pushed record; rejected records
                are dropped.
            name: Label used in logs.
            token: Cancelling it closes the subscription.
        """
        self.name = name
        self.filters = filters
        self._relay = relay
        self._accept = accept
        self._token = (token or CancelToken()).with_timeout(None)
        self._state = SubscriptionState.IDLE
        self._lock = threading.Lock()
        self._listeners: list[RecordListener] = []
        self._channels: list[asyncio.Queue[Record | None]] = []
        self._close_callbacks: list[Callable[["Subscription"], None]] = []
        self._released = False
        self._relay_sub: RelaySubscription | None = None
        self._task: asyncio.Task | None = None
        self.delivered = 0
        self.dropped = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def token(self) -> CancelToken:
        return self._token

    def add_listener(self, listener: RecordListener) -> Callable[[], None]:
        """Register a callback for each accepted record.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def add_close_callback(self, callback: Callable[["Subscription"], None]) -> None:
        """Call ``callback`` once, when the subscription has stopped for good."""
        with self._lock:
            if not self._released:
                self._close_callbacks.append(callback)
                return
        callback(self)

    async def start(self) -> "Subscription":
        """Open the relay subscription and start delivering records.

        Raises:
            Exception: Whatever the relay raised while subscribing. The
                subscription is closed in that case.
        """
        with self._lock:
            if self._state is not SubscriptionState.IDLE:
                return self
            self._state = SubscriptionState.CONNECTING

        logger.debug(f"{self.name}: connecting")
        try:
            relay_sub = self._relay.subscribe(self.filters)
        except Exception as e:
            logger.error(f"{self.name}: subscribe failed: {e}")
            with self._lock:
                self._state = SubscriptionState.CLOSED
            self._release()
            raise

        with self._lock:
            if self._state is SubscriptionState.CLOSED:
                # Closed while connecting
                relay_sub.close()
                return self
            self._relay_sub = relay_sub
            self._state = SubscriptionState.SUBSCRIBED

        self._task = asyncio.create_task(self._run())
        self._token.add_callback(self.close)
        logger.info(f"{self.name}: subscribed")
        return self

    async def _run(self) -> None:
        try:
            async for record in self._relay_sub:
                if self._state is SubscriptionState.CLOSED:
                    break
                self._dispatch(record)
        except Exception as e:
            logger.error(f"{self.name}: relay stream failed: {e}", exc_info=True)
        finally:
            # The relay may end the stream on its own; nothing restarts it
            with self._lock:
                self._state = SubscriptionState.CLOSED
            self._relay_sub.close()
            for channel in list(self._channels):
                channel.put_nowait(None)
            self._release()
            logger.debug(f"{self.name}: delivery stopped")

    def _dispatch(self, record: Record) -> None:
        if not self._accept(record):
            self.dropped += 1
            logger.debug(f"{self.name}: dropped invalid record {record.id}")
            return

        self.delivered += 1
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error(f"{self.name}: listener failed on {record.id}: {e}", exc_info=True)
        for channel in list(self._channels):
            channel.put_nowait(record)

    def _release(self) -> None:
        """Drop the hold on the token chain and run close callbacks, once."""
        with self._lock:
            if self._released:
                return
            self._released = True
            callbacks = list(self._close_callbacks)
            self._close_callbacks.clear()

        self._token.remove_callback(self.close)
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"{self.name}: close callback failed: {e}", exc_info=True)

    def close(self) -> None:
        """Stop delivery and release the relay subscription.

        Idempotent and safe to call from any thread.
        """
        with self._lock:
            if self._state is SubscriptionState.CLOSED:
                return
            self._state = SubscriptionState.CLOSED
            relay_sub = self._relay_sub

        if relay_sub is not None:
            relay_sub.close()
        self._token.cancel()
        self._release()
        logger.info(f"{self.name}: closed")

    async def wait_closed(self) -> None:
        """Wait until the delivery task has finished."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def records(self) -> AsyncIterator[Record]:
        """Iterate over accepted records until the subscription closes."""
        channel: asyncio.Queue[Record | None] = asyncio.Queue()
        self._channels.append(channel)
        try:
            while self._state is not SubscriptionState.CLOSED or not channel.empty():
                record = await channel.get()
                if record is None:
                    break
                yield record
        finally:
            self._channels.remove(channel)


class SubscriptionManager:
    """Maintains the owner's live subscriptions and their cache effects."""

    def __init__(
        self,
        relay: Relay,
        cache: Cache,
        owner_pubkey: str,
        config: Config | None = None,
    ):
        self._relay = relay
        self._cache = cache
        self.owner_pubkey = owner_pubkey
        self._config = config or Config()
        self.pot_kind = self._config.schema.plant_pot_kind
        self.log_kind = self._config.schema.plant_log_kind
        self._strict = self._config.schema.strict_validation
        self._subscriptions: list[Subscription] = []

    @property
    def subscriptions(self) -> list[Subscription]:
        return [s for s in self._subscriptions if s.state is not SubscriptionState.CLOSED]

    def _accepts(self, *kinds: int) -> Callable[[Record], bool]:
        def accept(record: Record) -> bool:
            if record.kind not in kinds:
                return False
            if record.kind == DELETION_KIND and record.pubkey != self.owner_pubkey:
                return False
            strict = self._strict if record.kind == self.pot_kind else True
            return validate(record, record.kind, strict)

        return accept

    def _deletion_filter(self) -> Filter:
        return Filter(kinds=(DELETION_KIND,), authors=(self.owner_pubkey,))

    async def _open(
        self,
        name: str,
        filters: list[Filter],
        accept: Callable[[Record], bool],
        listener: RecordListener,
        token: CancelToken | None,
    ) -> Subscription:
        subscription = Subscription(self._relay, filters, accept, name=name, token=token)
        subscription.add_listener(listener)
        self._subscriptions.append(subscription)
        subscription.add_close_callback(self._forget)
        return await subscription.start()

    def _forget(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def _owner_deletions(self, token: CancelToken | None) -> list[Record]:
        """Tombstones the owner has already published, under the read deadline."""
        scoped = (token or CancelToken()).with_timeout(self._config.relay.query_timeout_seconds)
        records = await scoped.run(self._relay.query([self._deletion_filter()]))
        return [
            r
            for r in records
            if r.kind == DELETION_KIND
            and r.pubkey == self.owner_pubkey
            and validate(r, DELETION_KIND)
        ]

    def _owner_log_coordinate(self, record: Record) -> Coordinate | None:
        """The owner's pot a log record is addressed to, if any."""
        coordinate = Coordinate.parse(record.first_tag("a") or "")
        if coordinate is None:
            return None
        if coordinate.kind != self.pot_kind or coordinate.pubkey != self.owner_pubkey:
            return None
        return coordinate

    def _invalidate_pots(self, record: Record) -> None:
        if record.kind == DELETION_KIND:
            self._cache.invalidate_prefix(("plant-pots", self.owner_pubkey))
            self._cache.invalidate_prefix(("plant-pot", self.owner_pubkey))
            self._cache.invalidate_prefix(("plant-logs", self.owner_pubkey))
            return

        self._cache.invalidate(plant_pots_key(self.owner_pubkey))
        identifier = record.first_tag("d")
        if identifier:
            self._cache.invalidate(plant_pot_key(self.owner_pubkey, identifier))

    async def watch_plant_pots(self, token: CancelToken | None = None) -> Subscription:
        """Invalidate the owner's pot entries whenever a pot or tombstone arrives."""
        return await self._open(
            "plant-pots",
            [
                Filter(kinds=(self.pot_kind,), tags={"p": (self.owner_pubkey,)}),
                self._deletion_filter(),
            ],
            self._accepts(self.pot_kind, DELETION_KIND),
            self._invalidate_pots,
            token,
        )

    async def watch_plant_pot(
        self, identifier: str, token: CancelToken | None = None
    ) -> Subscription:
        """Keep one pot's cache entry current by writing pushed versions into it.

        A pushed version only replaces the cached pot if it would win
        reconciliation against it. Tombstones invalidate the entry instead,
        and versions they cover are never written, however new they are.
        Tombstones published before the watch started are read from the
        relay first.

        Raises:
            RelayTimeoutError: The tombstone read exceeded its deadline.
            OperationCancelled: ``token`` was cancelled.
        """
        key = plant_pot_key(self.owner_pubkey, identifier)
        deletions = await self._owner_deletions(token)
        reconciler = Reconciler()

        def update(record: Record) -> None:
            if record.kind == DELETION_KIND:
                deletions.append(record)
                self._cache.invalidate(key)
                self._cache.invalidate(plant_pots_key(self.owner_pubkey))
                return
            try:
                pot = PlantPot.from_record(record)
            except ValidationError:
                return
            if pot.owner != self.owner_pubkey or pot.identifier != identifier:
                return
            if not reconciler.apply_deletions([record], deletions):
                logger.debug(f"Ignoring deleted version {record.id} of {identifier}")
                self._cache.invalidate(key)
                return
            entry = self._cache.peek(key)
            current = entry.value if entry is not None else None
            if isinstance(current, PlantPot) and recency_key(current.record) <= recency_key(record):
                return
            self._cache.set(key, pot)
            self._cache.invalidate(plant_pots_key(self.owner_pubkey))

        return await self._open(
            f"plant-pot:{identifier}",
            [
                Filter(
                    kinds=(self.pot_kind,),
                    tags={"p": (self.owner_pubkey,), "d": (identifier,)},
                ),
                self._deletion_filter(),
            ],
            self._accepts(self.pot_kind, DELETION_KIND),
            update,
            token,
        )

    async def watch_plant_logs(
        self,
        identifiers: Iterable[str] | None = None,
        token: CancelToken | None = None,
    ) -> Subscription:
        """Invalidate a pot's log entry whenever one of its devices logs.

        Args:
            identifiers: Pots to watch. None or empty watches every pot of
                the owner, including pots created after subscribing.
        """
        addresses = tuple(
            str(Coordinate(self.pot_kind, self.owner_pubkey, identifier))
            for identifier in identifiers or ()
        )
        if addresses:
            flt = Filter(kinds=(self.log_kind,), tags={"a": addresses})
        else:
            # Relays cannot match an address prefix; the owner check is local
            flt = Filter(kinds=(self.log_kind,))

        valid_log = self._accepts(self.log_kind)

        def accept(record: Record) -> bool:
            return valid_log(record) and self._owner_log_coordinate(record) is not None

        def invalidate(record: Record) -> None:
            coordinate = self._owner_log_coordinate(record)
            if coordinate is None:
                return
            self._cache.invalidate(plant_logs_key(self.owner_pubkey, coordinate.identifier))

        return await self._open("plant-logs", [flt], accept, invalidate, token)

    async def watch_weather_reading(
        self, station: str, token: CancelToken | None = None
    ) -> Subscription:
        """Write each newer reading of ``station`` straight into the cache."""
        key = weather_reading_key(station)

        def update(record: Record) -> None:
            if record.pubkey != station:
                return
            entry = self._cache.peek(key)
            current = entry.value if entry is not None else None
            if isinstance(current, WeatherReading) and current.created_at > record.created_at:
                return
            self._cache.set(key, WeatherReading.from_record(record))

        return await self._open(
            f"weather:{station[:8]}",
            [Filter(kinds=(WEATHER_READING_KIND,), authors=(station,))],
            self._accepts(WEATHER_READING_KIND),
            update,
            token,
        )

    async def close_all(self) -> None:
        """Close every subscription and wait for their tasks to end."""
        subscriptions = list(self._subscriptions)
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()
        for subscription in subscriptions:
            await subscription.wait_closed()
