from __future__ import annotations

import enum
from typing import Mapping, Tuple, TypeVar

S = TypeVar("S", bound=enum.Enum)


class Event(enum.Enum):
    """Outcome reported by a state handler."""

    OK = enum.auto()
    MORE = enum.auto()
    DONE = enum.auto()
    FILE_ERROR = enum.auto()
    ERROR = enum.auto()


def next_state(table: Mapping[Tuple[S, Event], S], state: S, event: Event) -> S:
    try:
        return table[(state, event)]
    except KeyError:
        raise ValueError(f"no transition from {state.name} on {event.name}") from None
