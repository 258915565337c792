#!/usr/bin/env python3
"""Fake process for integration testing.

Writes configurable payloads to stdout/stderr in the order the options are
given, then exits with the requested code. Used instead of shell utilities so
tests behave the same on every platform.

Usage:
    python fake_proc.py [--out TEXT] [--err TEXT] [--bytes N] [--copy-file PATH]
                        [--echo-stdin] [--sleep SECONDS] [--hang] [--exit-code CODE]

Arguments:
    --out: Write TEXT to stdout (backslash escapes such as \\n are decoded)
    --err: Write TEXT to stderr (escapes decoded)
    --bytes: Write N bytes of a repeating pattern to stdout
    --copy-file: Copy a file to stdout
    --echo-stdin: Copy stdin to stdout
    --sleep: Sleep for SECONDS
    --hang: Sleep until terminated
    --exit-code: Exit code (default: 0)

Payloads are flushed after every step.
"""

from __future__ import annotations

import argparse
import codecs
import shutil
import sys
import time
from typing import NoReturn

PATTERN = b"0123456789abcdefghijklmnopqrstuvwxyz\n"


class _Step(argparse.Action):
    """Record each option as an ordered step."""

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        steps = getattr(namespace, "steps", None) or []
        steps.append((self.dest, values))
        namespace.steps = steps


def pattern_bytes(n: int) -> bytes:
    """Deterministic payload of exactly n bytes."""
    repeats = n // len(PATTERN) + 1
    return (PATTERN * repeats)[:n]


def _decode(text: str) -> bytes:
    return codecs.decode(text, "unicode_escape").encode("latin-1")


def main() -> NoReturn:
    parser = argparse.ArgumentParser(description="Fake process for testing")
    parser.add_argument("--out", action=_Step)
    parser.add_argument("--err", action=_Step)
    parser.add_argument("--bytes", action=_Step, type=int)
    parser.add_argument("--copy-file", action=_Step)
    parser.add_argument("--echo-stdin", action=_Step, nargs=0)
    parser.add_argument("--sleep", action=_Step, type=float)
    parser.add_argument("--hang", action=_Step, nargs=0)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args()

    stdout = sys.stdout.buffer
    stderr = sys.stderr.buffer

    for kind, value in getattr(args, "steps", None) or []:
        if kind == "out":
            stdout.write(_decode(value))
            stdout.flush()
        elif kind == "err":
            stderr.write(_decode(value))
            stderr.flush()
        elif kind == "bytes":
            stdout.write(pattern_bytes(value))
            stdout.flush()
        elif kind == "copy_file":
            with open(value, "rb") as f:
                shutil.copyfileobj(f, stdout)
            stdout.flush()
        elif kind == "echo_stdin":
            shutil.copyfileobj(sys.stdin.buffer, stdout)
            stdout.flush()
        elif kind == "sleep":
            time.sleep(value)
        elif kind == "hang":
            while True:
                time.sleep(0.1)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
