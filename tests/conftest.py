import io
import json

import pytest

from correlator.config import Config
from correlator.engine import CorrelationEngine


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


def log_line(trace_id: str | None = "abc", **fields) -> str:
    data = {}
    if trace_id is not None:
        data["trace_id"] = trace_id
    data.update(fields)
    return json.dumps(data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def engine(config, output, clock):
    return CorrelationEngine(config, output, clock)


def emitted(output: io.StringIO) -> list[str]:
    return output.getvalue().splitlines()
