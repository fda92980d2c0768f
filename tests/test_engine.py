"""Tests for the correlation engine: per-line transitions, sweeps, and the event loop."""

import queue

import pytest

from conftest import emitted, log_line
from correlator.config import Config
from correlator.engine import CorrelationEngine
from correlator.matchers import Equals, Rule, RuleSet
from correlator.models import CleanupEvent, LineEvent, ShutdownEvent


def _completing_config(**overrides) -> Config:
    return Config(
        completion_rules=RuleSet((Rule((("msg", Equals("done")),)),)),
        **overrides,
    )


class TestFlush:
    def test_example_scenario(self, engine, output):
        lines = [
            '{"trace_id":"abc","level":"info","msg":"start"}',
            '{"trace_id":"abc","level":"info","msg":"step"}',
            '{"trace_id":"abc","level":"error","msg":"boom"}',
        ]
        for line in lines[:2]:
            engine.handle_line(line)
        assert emitted(output) == []

        engine.handle_line(lines[2])
        assert emitted(output) == lines

    def test_flush_emits_only_own_history(self, engine, output):
        engine.handle_line(log_line("a", level="info", msg="a1"))
        engine.handle_line(log_line("b", level="info", msg="b1"))
        engine.handle_line(log_line("a", level="info", msg="a2"))
        engine.handle_line(log_line("a", level="fatal", msg="a3"))
        assert emitted(output) == [
            log_line("a", level="info", msg="a1"),
            log_line("a", level="info", msg="a2"),
            log_line("a", level="fatal", msg="a3"),
        ]
        assert len(engine.store.get("b").records) == 1

    def test_first_line_triggers(self, engine, output):
        engine.handle_line(log_line(level="CRITICAL"))
        assert emitted(output) == [log_line(level="CRITICAL")]

    def test_buffer_cleared_on_trigger(self, engine):
        engine.handle_line(log_line(level="info"))
        engine.handle_line(log_line(level="error"))
        trx = engine.store.get("abc")
        assert trx.triggered is True
        assert trx.records == []


class TestPassthrough:
    def test_triggered_lines_pass_straight_through(self, engine, output):
        engine.handle_line(log_line(level="error", msg="boom"))
        engine.handle_line(log_line(level="info", msg="after"))
        engine.handle_line(log_line(level="debug", msg="more"))
        assert emitted(output) == [
            log_line(level="error", msg="boom"),
            log_line(level="info", msg="after"),
            log_line(level="debug", msg="more"),
        ]
        assert engine.store.get("abc").records == []

    def test_second_trigger_does_not_reemit(self, engine, output):
        engine.handle_line(log_line(level="info", msg="1"))
        engine.handle_line(log_line(level="error", msg="2"))
        engine.handle_line(log_line(level="error", msg="3"))
        assert emitted(output) == [
            log_line(level="info", msg="1"),
            log_line(level="error", msg="2"),
            log_line(level="error", msg="3"),
        ]


class TestUnparseable:
    @pytest.mark.parametrize("line", [
        "plain text line",
        '{"level": "info", "msg": "no trace"}',
        '{"trace_id": 42, "level": "info"}',
        "[1, 2, 3]",
        '{"trace_id":"n","level":"info","x":NaN}',
        '{"trace_id":"n","level":"error","x":Infinity}',
        '{"trace_id":"n","level":"info","x":-Infinity}',
    ])
    def test_emitted_immediately(self, engine, output, line):
        engine.handle_line(line)
        assert emitted(output) == [line]
        assert len(engine.store) == 0
        assert engine.stats.lines_unparsed == 1

    def test_does_not_disturb_buffered_transaction(self, engine, output):
        engine.handle_line(log_line(level="info", msg="1"))
        engine.handle_line("garbage")
        engine.handle_line(log_line(level="error", msg="2"))
        assert emitted(output) == [
            "garbage",
            log_line(level="info", msg="1"),
            log_line(level="error", msg="2"),
        ]

    def test_non_utf8_bytes_round_trip(self, engine, output):
        line = b"caf\xe9 not json".decode("utf-8", errors="surrogateescape")
        engine.handle_line(line)
        assert output.getvalue().encode("utf-8", errors="surrogateescape") == b"caf\xe9 not json\n"


class TestCompletion:
    def test_completion_without_trigger_discards(self, clock, output):
        engine = CorrelationEngine(_completing_config(), output, clock)
        engine.handle_line(log_line(level="info", msg="start"))
        engine.handle_line(log_line(level="info", msg="done"))
        assert emitted(output) == []
        assert "abc" not in engine.store

    def test_completion_resets_transaction(self, clock, output):
        engine = CorrelationEngine(_completing_config(), output, clock)
        engine.handle_line(log_line(level="error", msg="boom"))
        engine.handle_line(log_line(level="info", msg="done"))
        assert "abc" not in engine.store

        engine.handle_line(log_line(level="info", msg="fresh"))
        trx = engine.store.get("abc")
        assert trx.triggered is False
        assert [r.raw for r in trx.records] == [log_line(level="info", msg="fresh")]
        assert emitted(output) == [
            log_line(level="error", msg="boom"),
            log_line(level="info", msg="done"),
        ]

    def test_flush_and_complete_on_same_line(self, clock, output):
        engine = CorrelationEngine(_completing_config(), output, clock)
        engine.handle_line(log_line(level="info", msg="start"))
        engine.handle_line(log_line(level="error", msg="done"))
        assert emitted(output) == [
            log_line(level="info", msg="start"),
            log_line(level="error", msg="done"),
        ]
        assert "abc" not in engine.store
        assert engine.stats.flushes == 1
        assert engine.stats.completions == 1


class TestCleanup:
    def test_idle_untriggered_is_discarded(self, engine, output, clock):
        engine.handle_line(log_line(level="info", msg="start"))
        engine.handle_line(log_line(level="info", msg="step"))
        clock.advance(5001)
        engine.handle_cleanup(clock())
        assert "abc" not in engine.store
        assert emitted(output) == []

        # A later error only shows itself: the history is gone
        engine.handle_line(log_line(level="error", msg="late"))
        assert emitted(output) == [log_line(level="error", msg="late")]

    def test_not_evicted_at_exact_timeout(self, engine, output, clock):
        engine.handle_line(log_line(level="info", msg="1"))
        clock.advance(5000)
        engine.handle_cleanup(clock())
        engine.handle_line(log_line(level="error", msg="2"))
        assert emitted(output) == [log_line(level="info", msg="1"), log_line(level="error", msg="2")]

    def test_activity_keeps_transaction_alive(self, engine, clock):
        for _ in range(4):
            engine.handle_line(log_line(level="info"))
            clock.advance(3000)
            engine.handle_cleanup(clock())
        assert len(engine.store.get("abc").records) == 4

    def test_idle_triggered_transaction_stays_in_passthrough(self, engine, output, clock):
        engine.handle_line(log_line(level="error", msg="boom"))
        clock.advance(6000)
        engine.handle_cleanup(clock())
        assert engine.store.get("abc").triggered is True
        assert engine.stats.evictions == 0

        engine.handle_line(log_line(level="info", msg="later"))
        assert emitted(output) == [
            log_line(level="error", msg="boom"),
            log_line(level="info", msg="later"),
        ]
        assert engine.store.get("abc").records == []

    def test_cleanup_never_emits(self, engine, output, clock):
        for tid in ("a", "b", "c"):
            engine.handle_line(log_line(tid, level="info"))
        clock.advance(10_000)
        engine.handle_cleanup(clock())
        engine.handle_cleanup(clock())
        assert output.getvalue() == ""
        assert engine.stats.evictions == 3


class TestCustomIdField:
    def test_groups_by_configured_field(self, output, clock):
        engine = CorrelationEngine(Config(id_field="request_id"), output, clock)
        engine.handle_line('{"request_id": "r1", "level": "info"}')
        engine.handle_line('{"trace_id": "abc", "level": "info"}')
        assert emitted(output) == ['{"trace_id": "abc", "level": "info"}']
        assert "r1" in engine.store


class TestRun:
    def test_processes_in_order_until_shutdown(self, engine, output, clock):
        events = queue.SimpleQueue()
        events.put(LineEvent(log_line(level="info", msg="1")))
        events.put(LineEvent(log_line(level="error", msg="2")))
        events.put(ShutdownEvent())
        engine.run(events)
        assert emitted(output) == [log_line(level="info", msg="1"), log_line(level="error", msg="2")]

    def test_events_after_shutdown_are_dropped(self, engine, output):
        events = queue.SimpleQueue()
        events.put(LineEvent("first"))
        events.put(ShutdownEvent())
        events.put(LineEvent("second"))
        engine.run(events)
        assert emitted(output) == ["first"]
        assert events.get_nowait() == LineEvent("second")

    def test_cleanup_event_sweeps(self, engine, output, clock):
        events = queue.SimpleQueue()
        events.put(LineEvent(log_line(level="info")))
        events.put(CleanupEvent(clock() + 5001))
        events.put(LineEvent(log_line(level="error")))
        events.put(ShutdownEvent())
        engine.run(events)
        assert emitted(output) == [log_line(level="error")]

    def test_unknown_event_raises(self, engine):
        events = queue.SimpleQueue()
        events.put("bogus")
        with pytest.raises(TypeError):
            engine.run(events)

    def test_stats(self, engine):
        events = queue.SimpleQueue()
        for event in (
            LineEvent("noise"),
            LineEvent(log_line(level="info")),
            LineEvent(log_line(level="error")),
            LineEvent(log_line(level="info")),
            ShutdownEvent(),
        ):
            events.put(event)
        engine.run(events)
        assert engine.stats.to_dict() == {
            "lines_received": 4,
            "lines_unparsed": 1,
            "lines_emitted": 4,
            "lines_buffered": 1,
            "flushes": 1,
            "completions": 0,
            "evictions": 0,
        }
