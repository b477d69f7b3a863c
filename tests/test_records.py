"""Tests for record value types and the tag codec."""

import pytest

from plantr.records import (
    Coordinate,
    Filter,
    PlantLog,
    PlantPot,
    Record,
    Task,
    build_plant_pot_tags,
    compute_record_id,
    decode_record,
    decode_tasks,
    encode_tasks,
    first_tag,
)
from plantr.errors import ValidationError

from conftest import DEVICE, OWNER, make_pot, make_record


class TestRecord:
    """Tests for the Record dataclass."""

    def test_to_dict_from_dict_preserves_fields(self):
        """Test wire serialization keeps every field."""
        record = make_record(OWNER, 30000, [["d", "basil"], ["p", OWNER]], "secret", 123)

        data = record.to_dict()
        restored = Record.from_dict(data)

        assert data["tags"] == [["d", "basil"], ["p", OWNER]]
        assert restored == record

    def test_id_depends_on_content(self):
        """Test that changing any field changes the id."""
        base = compute_record_id(OWNER, 1, 30000, (("d", "x"),), "")

        assert base != compute_record_id(OWNER, 2, 30000, (("d", "x"),), "")
        assert base != compute_record_id(OWNER, 1, 30000, (("d", "y"),), "")
        assert len(base) == 64

    def test_first_tag_takes_first_occurrence(self):
        """Test duplicate non-repeatable tags resolve to the first one."""
        record = make_record(OWNER, 16158, [["name", "first"], ["name", "second"]])

        assert record.first_tag("name") == "first"
        assert record.tag_values("name") == ["first", "second"]
        assert record.first_tag("missing") is None


class TestCoordinate:
    """Tests for coordinate strings."""

    def test_format(self):
        assert str(Coordinate(30000, OWNER, "basil")) == f"30000:{OWNER}:basil"

    def test_parse_keeps_colons_in_identifier(self):
        """Test identifiers are not escaped and may contain colons."""
        coordinate = Coordinate.parse(f"30000:{OWNER}:shelf:left")

        assert coordinate == Coordinate(30000, OWNER, "shelf:left")

    @pytest.mark.parametrize("value", ["", "30000", "30000:abc", "kind:abc:x"])
    def test_parse_invalid(self, value):
        assert Coordinate.parse(value) is None


class TestFilter:
    """Tests for relay filters."""

    def test_to_dict_uses_hash_prefix_for_tags(self):
        flt = Filter(kinds=(30000,), tags={"p": (OWNER,), "d": ("basil",)}, limit=5)

        assert flt.to_dict() == {
            "kinds": [30000],
            "#p": [OWNER],
            "#d": ["basil"],
            "limit": 5,
        }

    def test_from_dict_roundtrip(self):
        data = {"kinds": [4223], "authors": [DEVICE], "limit": 1}
        assert Filter.from_dict(data).to_dict() == data

    def test_matches(self):
        record = make_pot("basil", created_at=50)

        assert Filter(kinds=(30000,), tags={"p": (OWNER,)}).matches(record)
        assert not Filter(kinds=(30001,)).matches(record)
        assert not Filter(authors=(OWNER,)).matches(record)
        assert not Filter(tags={"d": ("tomato",)}).matches(record)
        assert not Filter(since=51).matches(record)
        assert Filter(until=50).matches(record)


class TestTagCodec:
    """Tests for task and tag encoding."""

    def test_decode_tasks_scenario(self):
        """Test decoding a single task from a plant pot tag list."""
        tags = [["d", "tomato-1"], ["p", OWNER], ["task", "water", "30"]]

        assert decode_tasks(tags) == [Task("water", "30")]

    def test_append_task_preserves_order(self):
        """Test appending a task re-encodes after the existing ones."""
        tags = [["d", "tomato-1"], ["p", OWNER], ["task", "water", "30"]]
        tasks = decode_tasks(tags) + [Task("water", "5")]

        encoded = build_plant_pot_tags("tomato-1", OWNER, tasks)

        assert encoded[-2:] == (("task", "water", "30"), ("task", "water", "5"))
        assert encoded[:2] == (("d", "tomato-1"), ("p", OWNER))

    def test_encode_decode_roundtrip(self):
        tags = [["task", "water", "3"], ["d", "x"], ["task", "light", "60"], ["task", "water", "1"]]

        tasks = decode_tasks(tags)

        assert [list(t) for t in encode_tasks(tasks)] == [
            ["task", "water", "3"],
            ["task", "light", "60"],
            ["task", "water", "1"],
        ]

    def test_malformed_task_tags_are_dropped(self):
        """Test task tags with fewer than three positions are skipped."""
        tags = [["task", "water"], ["task"], ["task", "water", "10"]]

        assert decode_tasks(tags) == [Task("water", "10")]

    def test_build_tags_order(self):
        """Test identifying tags come before tasks."""
        tags = build_plant_pot_tags(
            "basil",
            OWNER,
            [Task("water", "2")],
            name="Basil",
            weather_station=DEVICE,
            client="plantr",
        )

        assert [t[0] for t in tags] == ["d", "p", "name", "weather_station", "client", "task"]

    def test_first_tag_helper(self):
        assert first_tag([["a"], ["name", "x"], ["name", "y"]], "name") == "x"
        assert first_tag([], "name") is None


class TestKinds:
    """Tests for typed decoding."""

    def test_plant_pot_from_record(self):
        record = make_pot("basil", tasks=[("water", "30")], name="Basil")

        pot = decode_record(record)

        assert isinstance(pot, PlantPot)
        assert pot.identifier == "basil"
        assert pot.owner == OWNER
        assert pot.device_pubkey == DEVICE
        assert pot.tasks == (Task("water", "30"),)
        assert pot.coordinate == Coordinate(30000, OWNER, "basil")
        assert pot.device_coordinate == Coordinate(30000, DEVICE, "basil")
        assert pot.display_name == "Basil"

    def test_plant_log_from_record(self):
        record = make_record(
            DEVICE, 30001, [["a", f"30000:{OWNER}:basil"], ["task", "water", "3"]]
        )

        log = decode_record(record)

        assert isinstance(log, PlantLog)
        assert log.plant_identifier == "basil"
        assert log.tasks == (Task("water", "3"),)

    def test_unknown_kind_rejected(self):
        """Test records of unknown kinds are not passed through."""
        with pytest.raises(ValidationError):
            decode_record(make_record(OWNER, 1, []))

    def test_plant_pot_without_d_rejected(self):
        with pytest.raises(ValidationError):
            PlantPot.from_record(make_record(DEVICE, 30000, [["p", OWNER]], "x"))
