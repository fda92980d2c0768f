"""CorrelationEngine: single consumer of the event queue.

All transaction state is mutated here and nowhere else. Producers (line
sources, cleanup ticker, signal handler) only put events on the queue.
"""

import logging
import queue
from dataclasses import dataclass, asdict
from typing import Callable, TextIO

from correlator.config import Config
from correlator.matchers import evaluate
from correlator.models import CleanupEvent, LineEvent, ShutdownEvent
from correlator.parser import ParseError, RecordParser, monotonic_ms
from correlator.store import TransactionStore

logger = logging.getLogger(__name__)


@dataclass
class EngineStats:
    lines_received: int = 0
    lines_unparsed: int = 0
    lines_emitted: int = 0
    lines_buffered: int = 0
    flushes: int = 0
    completions: int = 0
    evictions: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class CorrelationEngine:
    def __init__(self, config: Config, out: TextIO, clock: Callable[[], int] = monotonic_ms):
        self._config = config
        self._out = out
        self._parser = RecordParser(config.id_field, clock)
        self._store = TransactionStore(config.timeout_ms)
        self._stats = EngineStats()

    @property
    def store(self) -> TransactionStore:
        return self._store

    @property
    def stats(self) -> EngineStats:
        return self._stats

    def _emit(self, lines: list[str]):
        for line in lines:
            self._out.write(line + "\n")
        self._out.flush()
        self._stats.lines_emitted += len(lines)

    def handle_line(self, line: str):
        self._stats.lines_received += 1
        try:
            record = self._parser.parse(line)
        except ParseError as e:
            logger.debug("Passing through uncorrelated line: %s", e)
            self._stats.lines_unparsed += 1
            self._emit([line])
            return

        trx = self._store.get_or_create(record.correlation_id)
        flushed, completed = evaluate(record, self._config.flush_rules, self._config.completion_rules)

        if trx.triggered:
            self._emit([line])
        elif flushed:
            trx.triggered = True
            history = trx.drain()
            logger.debug("Flushing %s: %d buffered line(s)", record.correlation_id, len(history))
            self._stats.flushes += 1
            self._emit([r.raw for r in history] + [line])
        else:
            trx.add(record)
            self._stats.lines_buffered += 1

        if completed:
            logger.debug("Transaction %s completed", record.correlation_id)
            self._stats.completions += 1
            self._store.remove(record.correlation_id)

    def handle_cleanup(self, now: int):
        evicted = self._store.sweep(now)
        self._stats.evictions += len(evicted)

    def run(self, events: queue.SimpleQueue):
        """Consume events in arrival order until a ShutdownEvent is received.

        Events queued behind the shutdown are left unprocessed.
        """
        while True:
            event = events.get()
            if isinstance(event, ShutdownEvent):
                logger.info("Shutdown received, %d transaction(s) still live", len(self._store))
                return
            if isinstance(event, LineEvent):
                self.handle_line(event.line)
            elif isinstance(event, CleanupEvent):
                self.handle_cleanup(event.now)
            else:
                raise TypeError(f"Unexpected event: {event!r}")
