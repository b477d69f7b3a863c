"""Interfaces of the relay collaborator.

A relay stores signed records and answers filter queries. It is untrusted:
everything it returns is validated and reconciled on the client.
"""

from abc import ABC, abstractmethod

from ..records.record import Filter, Record


class RelaySubscription(ABC):
    """A live stream of records matching a set of filters."""

    @abstractmethod
    async def next_record(self) -> Record | None:
        """Wait for the next pushed record.

        Returns:
            The record, or None once the subscription is closed.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop delivery and release the underlying connection.

        Safe to call more than once and from any thread.
        """
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    def __aiter__(self) -> "RelaySubscription":
        return self

    async def __anext__(self) -> Record:
        record = await self.next_record()
        if record is None:
            raise StopAsyncIteration
        return record


class Relay(ABC):
    """Bidirectional query/publish/subscribe channel to a record log."""

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    async def query(self, filters: list[Filter]) -> list[Record]:
        """Return stored records matching any of ``filters``."""
        pass

    @abstractmethod
    async def publish(self, record: Record) -> None:
        """Store a signed record.

        Raises:
            PublishError: If the relay rejects the record.
        """
        pass

    @abstractmethod
    def subscribe(self, filters: list[Filter]) -> RelaySubscription:
        """Open a live subscription for records published from now on."""
        pass

    async def close(self) -> None:
        pass
