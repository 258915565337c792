"""Unbounded in-process byte pipe.

OutputPipe decouples the rate at which a child process writes from the rate at
which a consumer reads. Writes never block: the first ``buffer_size`` bytes are
held in memory and anything beyond that spills into temporary overflow files,
so a child process can never stall on a full, undrained OS pipe.

One logical writer and one logical reader per pipe. Several writer threads may
call write() (combined stdout/stderr); each write is enqueued atomically.
"""

from __future__ import annotations

import logging
import tempfile
import threading
from collections import deque
from typing import IO

__all__ = ["OutputPipe", "PipeClosedError"]

logger = logging.getLogger(__name__)


class PipeClosedError(OSError):
    """Write attempted after the write half was closed."""


class _MemorySegment:
    """Bytes held in memory."""

    __slots__ = ("data", "offset")

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    @property
    def pending(self) -> int:
        return len(self.data) - self.offset

    def read(self, size: int) -> bytes:
        chunk = self.data[self.offset : self.offset + size]
        self.offset += len(chunk)
        return chunk

    def close(self) -> None:
        self.data = b""


class _FileSegment:
    """Overflow bytes held in a temporary file.

    The file keeps growing while it is the tail segment, so a slow reader
    costs disk space rather than file descriptors.
    """

    __slots__ = ("file", "written", "consumed")

    def __init__(self) -> None:
        self.file: IO[bytes] = tempfile.TemporaryFile(prefix="runpipe-")
        self.written = 0
        self.consumed = 0

    @property
    def pending(self) -> int:
        return self.written - self.consumed

    def write(self, data: bytes) -> None:
        self.file.seek(self.written)
        self.file.write(data)
        self.written += len(data)

    def read(self, size: int) -> bytes:
        self.file.seek(self.consumed)
        chunk = self.file.read(min(size, self.pending))
        self.consumed += len(chunk)
        return chunk

    def close(self) -> None:
        self.file.close()


class OutputPipe:
    """FIFO byte channel with memory + overflow storage.

    Example:
        pipe = OutputPipe(buffer_size=1024)
        pipe.write(b"hello\\n")
        pipe.close_with_error(None)
        pipe.read()  # b"hello\\n"
        pipe.read()  # b"" (end of stream)
    """

    def __init__(self, buffer_size: int) -> None:
        self._buffer_size = max(1, buffer_size)

        self._segments: deque[_MemorySegment | _FileSegment] = deque()
        self._memory_bytes = 0
        self._cond = threading.Condition()

        self._write_closed = False
        self._read_closed = False
        self._error: BaseException | None = None

    # ------------------------------------------------------------------
    # Write half
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> int:
        """Enqueue data. Never blocks on the reader.

        Returns:
            Number of bytes accepted (always len(data))

        Raises:
            PipeClosedError: If the write half was already closed
        """
        n = len(data)
        with self._cond:
            if self._write_closed:
                raise PipeClosedError("write on closed pipe")
            if n == 0:
                return 0
            if self._read_closed:
                # Nobody will read this; drop it so the producer keeps draining
                return n

            tail = self._segments[-1] if self._segments else None
            if isinstance(tail, _FileSegment):
                # Once spilled, stay on disk until the reader catches up
                tail.write(bytes(data))
            elif self._memory_bytes + n <= self._buffer_size:
                self._segments.append(_MemorySegment(bytes(data)))
                self._memory_bytes += n
            else:
                tail = _FileSegment()
                tail.write(bytes(data))
                self._segments.append(tail)
                logger.debug(f"Relay overflow file opened after {self._memory_bytes} buffered bytes")

            self._cond.notify_all()
        return n

    def close_with_error(self, err: BaseException | None) -> None:
        """Close the write half. Only the first call has an effect.

        After the buffered bytes are drained, reads raise err, or return
        end-of-stream when err is None.
        """
        with self._cond:
            if self._write_closed:
                return
            self._write_closed = True
            self._error = err
            self._cond.notify_all()

    @property
    def write_closed(self) -> bool:
        with self._cond:
            return self._write_closed

    # ------------------------------------------------------------------
    # Read half
    # ------------------------------------------------------------------

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes, blocking until data is available.

        A negative size reads until the write half is closed.

        Returns:
            The bytes read; b"" at end of stream

        Raises:
            BaseException: The error the write half was closed with, once all
                buffered bytes have been read
        """
        if size < 0:
            return self._read_all()
        if size == 0:
            return b""

        with self._cond:
            while not self._segments and not self._write_closed:
                self._cond.wait()

            if not self._segments:
                return self._end_of_stream()

            parts: list[bytes] = []
            remaining = size
            while remaining > 0 and self._segments:
                head = self._segments[0]
                chunk = head.read(remaining)
                remaining -= len(chunk)
                parts.append(chunk)
                if isinstance(head, _MemorySegment):
                    self._memory_bytes -= len(chunk)
                if head.pending == 0:
                    self._segments.popleft()
                    head.close()
            return b"".join(parts)

    def _read_all(self) -> bytes:
        parts: list[bytes] = []
        while True:
            try:
                chunk = self.read(64 * 1024)
            except Exception:
                # The error is sticky: return what was read, raise on the next call
                if parts:
                    return b"".join(parts)
                raise
            if not chunk:
                return b"".join(parts)
            parts.append(chunk)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        """Read into a pre-allocated buffer. Returns 0 at end of stream."""
        view = memoryview(buffer).cast("B")
        chunk = self.read(len(view))
        view[: len(chunk)] = chunk
        return len(chunk)

    def _end_of_stream(self) -> bytes:
        if self._error is not None:
            raise self._error
        return b""

    def close(self) -> None:
        """Close the read half and release buffered storage.

        Later writes are accepted and discarded so producers can keep draining
        the process without growing the buffer.
        """
        with self._cond:
            self._read_closed = True
            while self._segments:
                self._segments.popleft().close()
            self._memory_bytes = 0
            self._cond.notify_all()

    @property
    def buffered(self) -> int:
        """Number of bytes currently waiting to be read."""
        with self._cond:
            return sum(segment.pending for segment in self._segments)
