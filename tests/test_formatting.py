"""Tests for presentation helpers."""

import pytest

from plantr.bech32 import naddr_decode
from plantr.formatting import (
    format_duration,
    format_relative_time,
    format_task,
    plant_pot_naddr,
)
from plantr.records import PlantPot, Task

from conftest import DEVICE, make_pot


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0s"), (45, "45s"), (60, "1m"), (125, "2m 5s")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    "delta,expected",
    [(10, "just now"), (120, "2m ago"), (7200, "2h ago"), (3 * 86400, "3d ago")],
)
def test_format_relative_time(delta, expected):
    assert format_relative_time(10_000_000 - delta, now=10_000_000) == expected


def test_format_task():
    assert format_task(Task("water", "30")) == "water for 30s"
    assert format_task(Task("water", "soon")) == "water for soon"


def test_plant_pot_naddr_points_at_device():
    pot = PlantPot.from_record(make_pot("basil"))

    pointer = naddr_decode(plant_pot_naddr(pot, ["wss://relay.samt.st"]))

    assert pointer.pubkey == DEVICE
    assert pointer.identifier == "basil"
    assert pointer.kind == 30000
    assert pointer.relays == ("wss://relay.samt.st",)
