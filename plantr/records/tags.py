"""Mapping between flat tag lists and typed plant pot attributes."""

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .record import Tags, normalize_tags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """A queued device command, e.g. water for 30 seconds."""

    type: str
    duration: str  # seconds, as a decimal string

    def to_tag(self) -> tuple[str, str, str]:
        return ("task", self.type, self.duration)

    @property
    def seconds(self) -> int:
        return int(self.duration)


def first_tag(tags: Iterable[Sequence[str]], name: str) -> str | None:
    """Return the value of the first tag called ``name``.

    Duplicates of non-repeatable tags are tolerated; later ones are ignored.
    """
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None


def decode_tasks(tags: Iterable[Sequence[str]]) -> list[Task]:
    """Project the repeated ``task`` tags into tasks, preserving order.

    Malformed task tags (fewer than three positions) are dropped.
    """
    tasks = []
    for tag in tags:
        if not tag or tag[0] != "task":
            continue
        if len(tag) < 3:
            logger.debug(f"Dropping malformed task tag: {list(tag)}")
            continue
        tasks.append(Task(type=tag[1], duration=tag[2]))
    return tasks


def encode_tasks(tasks: Iterable[Task]) -> list[tuple[str, ...]]:
    """One ``['task', type, duration]`` tag per task, in input order."""
    return [task.to_tag() for task in tasks]


def build_plant_pot_tags(
    identifier: str,
    owner: str,
    tasks: Iterable[Task] = (),
    name: str | None = None,
    weather_station: str | None = None,
    client: str | None = None,
) -> Tags:
    """Compose the full tag list of a plant pot record.

    Identifying tags come first, task tags are appended after them.
    """
    tags: list[tuple[str, ...]] = [("d", identifier), ("p", owner)]
    if name:
        tags.append(("name", name))
    if weather_station:
        tags.append(("weather_station", weather_station))
    if client:
        tags.append(("client", client))
    tags.extend(encode_tasks(tasks))
    return normalize_tags(tags)
