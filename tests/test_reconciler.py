"""Tests for latest-wins reconciliation and deletions."""

from plantr.records import Coordinate, Reconciler, latest, newest_first
from plantr.records.reconciler import owner_coordinate, recency_key

from conftest import DEVICE, OTHER_OWNER, OWNER, make_pot, make_record


def delete_ids(*record_ids, author=OWNER, created_at=500):
    return make_record(author, 5, [["e", rid] for rid in record_ids], "", created_at)


def delete_coords(*coordinates, author=OWNER, created_at=500):
    return make_record(author, 5, [["a", str(c)] for c in coordinates], "", created_at)


class TestOrdering:
    """Tests for recency ordering helpers."""

    def test_newest_first_dedupes(self):
        old = make_pot("basil", created_at=100)
        new = make_pot("basil", created_at=200)

        assert newest_first([old, new, old]) == [new, old]

    def test_tie_break_lowest_id(self):
        """Test equal timestamps resolve to the lexically lowest id."""
        a = make_pot("basil", created_at=100, tasks=[("water", "1")])
        b = make_pot("basil", created_at=100, tasks=[("water", "2")])
        expected = min(a, b, key=lambda r: r.id)

        assert latest([a, b]) == expected
        assert latest([b, a]) == expected
        assert recency_key(a) == (-100, a.id)

    def test_latest_empty(self):
        assert latest([]) is None


class TestReconcile:
    """Tests for Reconciler.reconcile."""

    def test_newest_version_wins(self):
        """Test two versions of basil keep only the later one."""
        old = make_pot("basil", created_at=100, tasks=[("water", "10")])
        new = make_pot("basil", created_at=200, tasks=[("water", "20")])

        result = Reconciler().reconcile([old, new])

        assert result == [new]

    def test_order_independent(self):
        records = [
            make_pot("basil", created_at=100),
            make_pot("basil", created_at=300),
            make_pot("tomato", created_at=200),
            make_pot("basil", created_at=200),
        ]

        forward = Reconciler().reconcile(records)
        backward = Reconciler().reconcile(list(reversed(records)))

        assert forward == backward
        assert [r.first_tag("d") for r in forward] == ["basil", "tomato"]
        assert forward[0].created_at == 300

    def test_idempotent(self):
        records = [make_pot("basil", created_at=t) for t in (100, 200, 150)]
        reconciler = Reconciler()

        once = reconciler.reconcile(records)

        assert reconciler.reconcile(once) == once
        assert reconciler.reconcile(records + records) == once

    def test_grouped_by_owner_not_device(self):
        """Test pots signed by different devices share the owner coordinate."""
        other_device = "b" * 64
        first = make_pot("basil", created_at=100)
        second = make_pot("basil", created_at=200, device=other_device)

        assert Reconciler().reconcile([first, second]) == [second]
        assert owner_coordinate(first) == Coordinate(30000, OWNER, "basil")

    def test_different_owners_are_different_coordinates(self):
        mine = make_pot("basil", created_at=100)
        theirs = make_pot("basil", created_at=200, owner=OTHER_OWNER)

        assert len(Reconciler().reconcile([mine, theirs])) == 2

    def test_records_without_d_are_skipped(self):
        record = make_record(DEVICE, 30000, [["p", OWNER]], "x")
        assert Reconciler().reconcile([record]) == []


class TestDeletions:
    """Tests for deletion handling."""

    def test_id_deletion_promotes_previous_version(self):
        old = make_pot("basil", created_at=100)
        new = make_pot("basil", created_at=200)

        result = Reconciler().reconcile([old, new], [delete_ids(new.id)])

        assert result == [old]

    def test_coordinate_deletion_removes_all_versions(self):
        """Test a coordinate tombstone ignores timestamps."""
        old = make_pot("basil", created_at=100)
        new = make_pot("basil", created_at=900)
        deletion = delete_coords(Coordinate(30000, OWNER, "basil"), created_at=500)

        assert Reconciler().reconcile([old, new], [deletion]) == []

    def test_device_coordinate_variant(self):
        pot = make_pot("basil")
        deletion = delete_coords(Coordinate(30000, DEVICE, "basil"))

        assert Reconciler().reconcile([pot], [deletion]) == []

    def test_device_may_delete(self):
        pot = make_pot("basil")
        assert Reconciler().reconcile([pot], [delete_ids(pot.id, author=DEVICE)]) == []

    def test_unauthorized_deletion_ignored(self):
        """Test a stranger cannot tombstone someone else's pot."""
        pot = make_pot("basil")
        by_id = delete_ids(pot.id, author=OTHER_OWNER)
        by_coordinate = delete_coords(Coordinate(30000, OWNER, "basil"), author=OTHER_OWNER)

        assert Reconciler().reconcile([pot], [by_id, by_coordinate]) == [pot]

    def test_non_deletion_records_ignored(self):
        pot = make_pot("basil")
        assert Reconciler().reconcile([pot], [make_pot("tomato")]) == [pot]

    def test_current(self):
        basil = make_pot("basil", created_at=100)
        tomato = make_pot("tomato", created_at=200)
        reconciler = Reconciler()

        assert reconciler.current(Coordinate(30000, OWNER, "basil"), [basil, tomato]) == basil
        assert reconciler.current(
            Coordinate(30000, OWNER, "basil"), [basil], [delete_ids(basil.id)]
        ) is None
