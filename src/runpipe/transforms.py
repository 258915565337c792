"""Per-line output transforms.

A LineMap receives one terminator-stripped line and a destination. Whatever it
writes to the destination becomes the input of the next LineMap, and the
output of the last one is what consumers see. LineMaps run at aggregation time
(Output.stream(), Output.lines(), ...), strictly in registration order.

    def shout(line: bytes, dst: Sink) -> None:
        dst.write(line.upper())

    def drop_blank(line: bytes, dst: Sink) -> None:
        if line.strip():
            dst.write(line)

A LineMap that never calls dst.write() removes the line. Calling
dst.write(b"") keeps it as an empty line. Exceptions raised by a LineMap stop
line processing and are raised from the consumption call, unless the command
itself failed.
"""

from __future__ import annotations

import io
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Protocol

from .scanner import Readable, iter_lines

__all__ = ["LineMap", "Sink", "TracedBuffer", "TransformChain"]


class Sink(Protocol):
    def write(self, data: bytes, /) -> Any: ...


LineMap = Callable[[bytes, Sink], Any]


class TracedBuffer(io.BytesIO):
    """BytesIO that records whether write() was called at all.

    write_called distinguishes "no write happened" (line removed) from "wrote
    nothing" (line kept as empty), which the byte count alone cannot.
    """

    def __init__(self) -> None:
        super().__init__()
        self.write_called = False

    def write(self, data: Any, /) -> int:
        self.write_called = True
        return super().write(data)


class TransformChain:
    """Ordered list of LineMaps applied to each line in turn."""

    def __init__(self, stages: Iterable[LineMap] = ()) -> None:
        self._stages: list[LineMap] = list(stages)

    def append(self, stage: LineMap) -> None:
        self._stages.append(stage)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[LineMap]:
        return iter(self._stages)

    def apply(self, line: bytes) -> bytes | None:
        """Run line through every stage.

        Returns:
            The transformed content, or None if a stage removed the line
        """
        for stage in self._stages:
            buf = TracedBuffer()
            stage(line, buf)
            if not buf.write_called:
                return None
            line = buf.getvalue()
        return line

    def transformed(self, reader: Readable, read_size: int) -> Iterator[bytes]:
        """Yield newline-terminated transformed content for each input line."""
        for line in iter_lines(reader, read_size):
            content = self.apply(line)
            if content is None:
                continue
            if not content.endswith(b"\n"):
                content += b"\n"
            yield content

    def pipe(self, reader: Readable, dst: Sink, read_size: int) -> int:
        """Copy transformed lines from reader to dst.

        Returns:
            Number of bytes written to dst
        """
        total = 0
        for content in self.transformed(reader, read_size):
            dst.write(content)
            total += len(content)
        return total
