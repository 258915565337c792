"""Line splitting over byte streams."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Protocol

__all__ = ["LineWriter", "Readable", "iter_lines", "strip_terminator"]

DEFAULT_READ_SIZE = 32 * 1024


class Readable(Protocol):
    def read(self, size: int = ...) -> bytes: ...


def strip_terminator(line: bytes) -> bytes:
    """Strip one trailing ``\\n`` (and a ``\\r`` before it)."""
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def iter_lines(reader: Readable, read_size: int = DEFAULT_READ_SIZE) -> Iterator[bytes]:
    """Yield terminator-stripped lines from reader until end of stream.

    Empty lines between terminators are yielded as b"". A final line without
    a terminator is yielded if it is non-empty. Lines of any length are
    supported; nothing is truncated.

    Errors raised by reader.read() propagate after all complete lines read so
    far have been yielded.
    """
    pending = bytearray()
    while True:
        chunk = reader.read(read_size)
        if not chunk:
            break

        start = 0
        newline = chunk.find(b"\n")
        while newline != -1:
            if pending:
                pending += chunk[start:newline]
                yield strip_terminator(bytes(pending))
                pending.clear()
            else:
                yield strip_terminator(chunk[start:newline])
            start = newline + 1
            newline = chunk.find(b"\n", start)
        pending += chunk[start:]

    if pending:
        yield strip_terminator(bytes(pending))


class LineWriter:
    """Writable that hands each complete line to a handler.

    Bytes written are split on ``\\n``, which is removed; other bytes, ``\\r``
    included, reach the handler unchanged. A partial trailing line is held until
    its terminator arrives or flush() is called.
    """

    def __init__(self, handler: Callable[[bytes], None]) -> None:
        self._handler = handler
        self._pending = bytearray()

    def write(self, data: bytes) -> int:
        self._pending += data
        while True:
            newline = self._pending.find(b"\n")
            if newline == -1:
                break
            line = bytes(self._pending[:newline])
            del self._pending[: newline + 1]
            self._handler(line)
        return len(data)

    def flush(self) -> None:
        if self._pending:
            line = bytes(self._pending)
            self._pending.clear()
            self._handler(line)
