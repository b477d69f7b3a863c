"""Resolution of the current record per coordinate.

The only ordering the engine trusts is each record's own ``created_at``.
Arrival order, relay order and duplicate deliveries never change the result,
so reconciling the same inputs twice, or reconciling an already reconciled
set, yields the same records.
"""

import logging
from collections import defaultdict
from typing import Callable, Iterable

from .kinds import Deletion
from .record import DELETION_KIND, Coordinate, Record

logger = logging.getLogger(__name__)

CoordinateFn = Callable[[Record], Coordinate | None]
IdentitiesFn = Callable[[Record], set[str]]


def owner_coordinate(record: Record) -> Coordinate | None:
    """Plant pots are keyed by the owner in ``p``, not by the signing device."""
    identifier = record.first_tag("d")
    if identifier is None:
        return None
    return Coordinate(record.kind, record.first_tag("p") or record.pubkey, identifier)


def record_identities(record: Record) -> set[str]:
    """Identities that may address or delete a record: its author and its owner."""
    identities = {record.pubkey}
    owner = record.first_tag("p")
    if owner:
        identities.add(owner)
    return identities


def recency_key(record: Record) -> tuple[int, str]:
    """Sort key putting the current record first.

    Newest ``created_at`` wins; on a tie the lexically lowest id wins.
    """
    return (-record.created_at, record.id)


def newest_first(records: Iterable[Record]) -> list[Record]:
    """Deduplicate by id and order newest first."""
    unique = {record.id: record for record in records}
    return sorted(unique.values(), key=recency_key)


def latest(records: Iterable[Record]) -> Record | None:
    ordered = newest_first(records)
    return ordered[0] if ordered else None


class Reconciler:
    """Computes the current record per coordinate under deletions.

    A deletion is honored only when its author is one of the target record's
    identities (see ``record_identities``). Coordinate tombstones remove every
    version at that coordinate, whichever identity variant they were written
    with.
    """

    def __init__(
        self,
        coordinate_of: CoordinateFn = owner_coordinate,
        identities_of: IdentitiesFn = record_identities,
    ):
        self._coordinate_of = coordinate_of
        self._identities_of = identities_of

    @staticmethod
    def _index_deletions(
        deletions: Iterable[Record | Deletion],
    ) -> tuple[dict[str, set[str]], dict[str, set[str]]]:
        deleted_ids: dict[str, set[str]] = defaultdict(set)
        deleted_coords: dict[str, set[str]] = defaultdict(set)

        for deletion in deletions:
            if isinstance(deletion, Record):
                if deletion.kind != DELETION_KIND:
                    continue
                deletion = Deletion.from_record(deletion)
            for record_id in deletion.record_ids:
                deleted_ids[record_id].add(deletion.author)
            for coordinate in deletion.coordinates:
                deleted_coords[coordinate].add(deletion.author)

        return deleted_ids, deleted_coords

    def is_deleted(
        self,
        record: Record,
        deleted_ids: dict[str, set[str]],
        deleted_coords: dict[str, set[str]],
    ) -> bool:
        identities = self._identities_of(record)

        if deleted_ids.get(record.id, set()) & identities:
            return True

        identifier = record.first_tag("d")
        if identifier is None:
            return False
        for identity in identities:
            address = str(Coordinate(record.kind, identity, identifier))
            if deleted_coords.get(address, set()) & identities:
                return True
        return False

    def apply_deletions(
        self,
        records: Iterable[Record],
        deletions: Iterable[Record | Deletion],
    ) -> list[Record]:
        """Drop every record tombstoned by an authorized deletion."""
        deleted_ids, deleted_coords = self._index_deletions(deletions)
        survivors = []
        for record in records:
            if self.is_deleted(record, deleted_ids, deleted_coords):
                logger.debug(f"Record {record.id} is deleted")
                continue
            survivors.append(record)
        return survivors

    def reconcile(
        self,
        records: Iterable[Record],
        deletions: Iterable[Record | Deletion] = (),
    ) -> list[Record]:
        """Return one current record per coordinate, newest first.

        Args:
            records: Validated records of one addressable kind.
            deletions: Deletion records authored by the querying owner.

        Returns:
            The winner of each coordinate, ordered by ``recency_key``.
        """
        groups: dict[Coordinate, list[Record]] = defaultdict(list)
        for record in self.apply_deletions(records, deletions):
            coordinate = self._coordinate_of(record)
            if coordinate is None:
                continue
            groups[coordinate].append(record)

        winners = [min(group, key=recency_key) for group in groups.values()]
        return sorted(winners, key=recency_key)

    def current(
        self,
        coordinate: Coordinate,
        records: Iterable[Record],
        deletions: Iterable[Record | Deletion] = (),
    ) -> Record | None:
        """The current record at a single coordinate, if any survives."""
        for record in self.reconcile(records, deletions):
            if self._coordinate_of(record) == coordinate:
                return record
        return None
