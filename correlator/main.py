#!/usr/bin/env python3
"""log-correlator: buffer JSON log lines per trace and only show troubled ones."""

import argparse
import logging
import os
import queue
import sys

from correlator.config import LOG_LEVELS, ConfigError, default_config_path, load_config, load_yaml_config
from correlator.engine import CorrelationEngine
from correlator.sources import CleanupTicker, StreamReader, SubprocessReader, install_shutdown_handler

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="log-correlator",
        description="Buffer JSON log lines per correlation id; emit a transaction's "
                    "lines only once one of them matches a flush trigger.",
    )
    parser.add_argument(
        "cmd", nargs="?",
        help="Command to run; its stdout is read instead of stdin",
    )
    parser.add_argument(
        "args", nargs=argparse.REMAINDER,
        help="Arguments for the command",
    )
    parser.add_argument(
        "--config", default=default_config_path(),
        help="YAML config file with triggers (default: $CORRELATOR_CONFIG)",
    )
    parser.add_argument(
        "--id-field",
        help="JSON field holding the correlation id (default: trace_id)",
    )
    parser.add_argument(
        "--timeout", type=int,
        help="Milliseconds of inactivity before an untriggered transaction is dropped (default: 5000)",
    )
    parser.add_argument(
        "--cleanup-interval", type=int,
        help="Milliseconds between idle-transaction sweeps (default: 1000)",
    )
    parser.add_argument(
        "--log-level", type=str.upper, choices=LOG_LEVELS,
        default=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        help="Diagnostics level on stderr (default: $LOG_LEVEL or WARNING)",
    )
    return parser


def _prepare_output():
    # Same codec settings as the readers so lines round-trip byte for byte
    sys.stdout.reconfigure(encoding="utf-8", errors="surrogateescape", newline="\n")


def run(args) -> int:
    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigError as e:
        logger.error("%s", e)
        return 2
    logger.info("Config: id_field=%s, timeout=%dms, cleanup_interval=%dms, %d flush / %d completion rule(s)",
                config.id_field, config.timeout_ms, config.cleanup_interval_ms,
                len(config.flush_rules), len(config.completion_rules))

    events = queue.SimpleQueue()

    if args.cmd:
        reader = SubprocessReader([args.cmd, *args.args], events)
    else:
        reader = StreamReader(sys.stdin.buffer, events)
    try:
        reader.start()
    except OSError as e:
        logger.error("Failed to start %s: %s", args.cmd, e)
        return 1

    ticker = CleanupTicker(config.cleanup_interval_ms, events)
    ticker.start()

    if sys.stdin.isatty():
        install_shutdown_handler(events)

    _prepare_output()
    engine = CorrelationEngine(config, sys.stdout)
    try:
        engine.run(events)
    finally:
        ticker.stop()
        logger.info("Stats: %s", engine.stats.to_dict())
    return 0


def main():
    parser = build_cli_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level, logging.WARNING),
        format="%(asctime)s [CORRELATOR] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        code = run(args)
    except KeyboardInterrupt:
        code = 0
    except BrokenPipeError:
        # Downstream closed; keep the interpreter from complaining at exit
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
