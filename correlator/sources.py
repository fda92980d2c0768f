"""Event producers: line readers, the cleanup ticker, and signal shutdown.

Each producer runs in its own daemon thread and communicates with the
engine only through the shared event queue.
"""

import logging
import queue
import signal
import subprocess
import threading
from typing import BinaryIO, Callable

from correlator.models import CleanupEvent, LineEvent, ShutdownEvent
from correlator.parser import monotonic_ms

logger = logging.getLogger(__name__)


def decode_line(raw: bytes) -> str:
    """Strip the line terminator and decode, keeping undecodable bytes intact."""
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw.decode("utf-8", errors="surrogateescape")


class StreamReader(threading.Thread):
    """Reads a binary stream line by line until EOF, then enqueues shutdown."""

    def __init__(self, stream: BinaryIO, events: queue.SimpleQueue, name: str = "stdin"):
        super().__init__(daemon=True, name=f"reader-{name}")
        self._stream = stream
        self._events = events
        self._source = name
        self._line_count = 0

    @property
    def line_count(self) -> int:
        return self._line_count

    def _pump(self):
        try:
            for raw in iter(self._stream.readline, b""):
                self._events.put(LineEvent(decode_line(raw)))
                self._line_count += 1
        except (OSError, ValueError) as e:
            logger.error("Error reading from %s: %s", self._source, e)

    def _finish(self):
        logger.info("Input %s exhausted after %d line(s)", self._source, self._line_count)

    def run(self):
        try:
            self._pump()
            self._finish()
        finally:
            self._events.put(ShutdownEvent())


class SubprocessReader(StreamReader):
    """Spawns a command and reads its stdout.

    The child inherits our stdin, stderr and process group, so terminal
    signals reach it directly; we only read until its stdout closes.
    """

    def __init__(self, argv: list[str], events: queue.SimpleQueue):
        super().__init__(None, events, name=argv[0])
        self._argv = argv
        self._process: subprocess.Popen | None = None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    def start(self):
        """Spawn the child, then start reading. Spawn errors raise here."""
        self._process = subprocess.Popen(self._argv, stdout=subprocess.PIPE)
        self._stream = self._process.stdout
        logger.info("Started %s (PID %d)", " ".join(self._argv), self._process.pid)
        super().start()

    def _finish(self):
        self._stream.close()
        code = self._process.wait()
        logger.info("%s exited with code %d after %d line(s)", self._source, code, self._line_count)


class CleanupTicker(threading.Thread):
    """Enqueues a CleanupEvent carrying the current clock every interval."""

    def __init__(self, interval_ms: int, events: queue.SimpleQueue,
                 clock: Callable[[], int] = monotonic_ms):
        super().__init__(daemon=True, name="cleanup-ticker")
        self._interval = interval_ms / 1000.0
        self._events = events
        self._clock = clock
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(timeout=self._interval):
            self._events.put(CleanupEvent(self._clock()))

    def stop(self):
        self._stop_event.set()


def install_shutdown_handler(events: queue.SimpleQueue, signals=(signal.SIGINT, signal.SIGTERM)):
    """Route termination signals to an out-of-band ShutdownEvent.

    Lines already queued behind the shutdown are dropped.
    """
    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        events.put(ShutdownEvent())

    for sig in signals:
        signal.signal(sig, _signal_handler)
