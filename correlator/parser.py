"""Record parser: one raw JSON line -> Record, or a ParseError."""

import json
import time
from typing import Callable

from correlator.models import Record


class ParseError(Exception):
    """A line that cannot be correlated; the engine passes it through."""


class MalformedLineError(ParseError):
    pass


class MissingCorrelationIdError(ParseError):
    pass


def monotonic_ms() -> int:
    """Milliseconds from the monotonic clock. Used for arrivals and ticks alike."""
    return int(time.monotonic() * 1000)


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


def parse_record(line: str, id_field: str, received_at: int) -> Record:
    """Parse *line* as JSON and extract the string correlation id at *id_field*.

    Raises MalformedLineError if the line is not valid JSON (NaN and
    Infinity included), and MissingCorrelationIdError if the value is not
    an object, the field is absent, or the field is not a string.
    """
    try:
        fields = json.loads(line, parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedLineError(f"not valid JSON: {e}") from e

    if not isinstance(fields, dict):
        raise MissingCorrelationIdError("JSON value is not an object")

    correlation_id = fields.get(id_field)
    if not isinstance(correlation_id, str):
        raise MissingCorrelationIdError(f"field {id_field!r} missing or not a string")

    return Record(
        raw=line,
        fields=fields,
        correlation_id=correlation_id,
        received_at=received_at,
    )


class RecordParser:
    def __init__(self, id_field: str, clock: Callable[[], int] = monotonic_ms):
        self._id_field = id_field
        self._clock = clock

    def parse(self, line: str) -> Record:
        return parse_record(line, self._id_field, self._clock())
