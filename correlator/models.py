"""Record and queue event types shared by the parser, engine, and sources."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Record:
    raw: str              # original line, no terminator
    fields: Any           # parsed JSON value
    correlation_id: str
    received_at: int      # ms, engine clock


@dataclass(frozen=True)
class LineEvent:
    line: str


@dataclass(frozen=True)
class CleanupEvent:
    now: int


@dataclass(frozen=True)
class ShutdownEvent:
    pass


Event = LineEvent | CleanupEvent | ShutdownEvent
