"""runpipe command-line interface.

    runpipe -- ls -la
    runpipe --stdout --map-jq .msg -- cat events.jsonl
    runpipe --jq '.items | length' -- kubectl get pods -o json

The command's aggregated output is written to stdout. On failure the error is
printed to stderr and runpipe exits with the command's exit code.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Sequence

from . import __version__
from .command import Command
from .config import Config, get_config
from .errors import RunError, exit_code
from .hooks import LoggingHooks
from .jsonquery import map_jq
from .output import Output

__all__ = ["build_parser", "main", "run"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Configure log handlers for the CLI."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if verbose else logging.WARNING

    # Keep third-party libraries quiet
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("runpipe").setLevel(log_level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runpipe",
        description="Run a command and aggregate its output.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    streams = parser.add_mutually_exclusive_group()
    streams.add_argument("--stdout", action="store_true", help="only aggregate stdout")
    streams.add_argument("--stderr", action="store_true", help="only aggregate stderr")

    parser.add_argument(
        "--map-jq",
        metavar="QUERY",
        action="append",
        default=[],
        help="apply a jq query to every line (repeatable, applied in order)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--jq", metavar="QUERY", help="run a jq query against the whole output")
    mode.add_argument("--lines", action="store_true", help="print output lines as a JSON array")

    parser.add_argument("--buffer-size", type=int, help="in-memory relay threshold in bytes")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run")
    return parser


def _consume(out: Output, args: argparse.Namespace) -> None:
    stdout = sys.stdout.buffer
    if args.jq:
        stdout.write(out.jq(args.jq) + b"\n")
    elif args.lines:
        stdout.write(json.dumps(out.lines(), ensure_ascii=False).encode("utf-8") + b"\n")
    else:
        out.stream(stdout)
    stdout.flush()


def _shell_exit_code(code: int) -> int:
    """Map a signal exit (-signum) to the shell's 128 + signum."""
    return 128 - code if code < 0 else code


def run(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    config = get_config()
    if args.buffer_size:
        config = config.with_buffer_size(args.buffer_size)
    setup_logging(config, verbose=args.verbose)

    cancel = threading.Event()
    builder = Command(command).config(config).hooks(LoggingHooks()).cancel_on(cancel)
    if args.stdout:
        builder.stdout()
    elif args.stderr:
        builder.stderr()

    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        stages = [map_jq(query) for query in args.map_jq]
        out = builder.run()
        for stage in stages:
            out.map(stage)
        _consume(out, args)
    except RunError as e:
        logger.debug(f"Command failed: {e!r}")
        print(f"runpipe: {e}", file=sys.stderr)
        return _shell_exit_code(exit_code(e))
    except OSError as e:
        # Writing to stdout failed, e.g. the reading end of a shell pipe closed
        logger.debug(f"Output sink failed: {e!r}")
        print(f"runpipe: {e}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)
    return 0


def main() -> None:
    sys.exit(run())
