"""Tests for the snapshot cache."""

from plantr.cache import (
    Cache,
    plant_logs_key,
    plant_pot_key,
    plant_pots_key,
    weather_reading_key,
)


class TestCache:
    """Tests for Cache."""

    def test_set_and_get(self):
        cache = Cache()
        cache.set(plant_pots_key("owner"), ("a", "b"))

        assert cache.get(plant_pots_key("owner")) == ("a", "b")
        assert cache.is_fresh(plant_pots_key("owner"))

    def test_missing_key(self):
        assert Cache().get(("nothing",)) is None

    def test_invalidate_keeps_stale_value(self):
        cache = Cache()
        cache.set(plant_pot_key("owner", "basil"), "pot")

        assert cache.invalidate(plant_pot_key("owner", "basil"))

        assert cache.get(plant_pot_key("owner", "basil")) is None
        entry = cache.peek(plant_pot_key("owner", "basil"))
        assert entry.stale
        assert entry.value == "pot"

    def test_invalidate_missing(self):
        assert not Cache().invalidate(("missing",))

    def test_invalidate_prefix(self):
        cache = Cache()
        cache.set(plant_pot_key("owner", "basil"), 1)
        cache.set(plant_pot_key("owner", "tomato"), 2)
        cache.set(plant_pot_key("other", "basil"), 3)
        cache.set(plant_logs_key("owner", "basil"), 4)

        count = cache.invalidate_prefix(("plant-pot", "owner"))

        assert count == 2
        assert cache.get(plant_pot_key("other", "basil")) == 3
        assert cache.get(plant_logs_key("owner", "basil")) == 4

    def test_set_replaces_stale_entry(self):
        cache = Cache()
        key = weather_reading_key("station")
        cache.set(key, "old")
        cache.invalidate(key)

        cache.set(key, "new")

        assert cache.get(key) == "new"

    def test_listeners(self):
        cache = Cache()
        seen = []
        remove = cache.add_listener(seen.append)

        cache.set(("a",), 1)
        cache.invalidate(("a",))
        remove()
        cache.set(("b",), 2)

        assert seen == [("a",), ("a",)]

    def test_failing_listener_does_not_block_others(self):
        cache = Cache()
        seen = []

        def broken(key):
            raise RuntimeError("boom")

        cache.add_listener(broken)
        cache.add_listener(seen.append)

        cache.set(("a",), 1)

        assert seen == [("a",)]

    def test_remove_and_clear(self):
        cache = Cache()
        cache.set(("a",), 1)
        cache.set(("b",), 2)

        cache.remove(("a",))
        assert cache.keys() == [("b",)]

        cache.clear()
        assert cache.keys() == []
