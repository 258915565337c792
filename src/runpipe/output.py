"""Output aggregation for running commands.

An Output is returned by attach() (or Command.run()) as soon as the process
has started. Exactly one consumption method may be called on it:

- stream() / write_to(): copy output to a writable
- stream_lines(): call a function for every line
- lines(): collect every line into a list
- text(): collect all output as a string
- jq(): run a jq query against the whole output
- read() / readinto(): read output incrementally, e.g. to feed another command
- wait(): discard output and wait for the command to finish

Every consumption method runs the completion coordinator in a background
thread while it reads, because the process may still be writing while the
caller drains its output. Each raises at most one error: the process error if
the command failed, otherwise the first error raised while consuming output.
A second consumption call raises AlreadyConsumedError.
"""

from __future__ import annotations

import io
import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from .completion import Completion
from .config import Config, get_config
from .errors import AlreadyConsumedError, BuildError, RunError
from .hooks import ExecutedCommand, Hooks, notify
from .jsonquery import build_jq, exec_jq
from .process import AttachMode, ExecutedProcess, ProcessSpec, spawn, watch_cancel
from .relay import OutputPipe
from .scanner import LineWriter
from .transforms import LineMap, Sink, TransformChain

__all__ = [
    "CommandOutput",
    "ErrorOutput",
    "Output",
    "attach",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Marks the end of the line channel used by lines()
_DONE = object()


def _start(fn: Callable[..., T], *args: Any, name: str) -> Future[T]:
    """Run fn in a daemon thread and return a Future for its result."""
    future: Future[T] = Future()

    def _run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)

    threading.Thread(target=_run, name=name, daemon=True).start()
    return future


def _decode(line: bytes) -> str:
    return line.decode("utf-8", errors="replace")


def _trim_newline(text: str) -> str:
    if text.endswith("\n"):
        return text[:-1]
    return text


class Output(ABC):
    """Configures and consumes the output of a command."""

    @abstractmethod
    def map(self, stage: LineMap) -> Output:
        """Add a LineMap applied at aggregation time, after those already added."""

    @abstractmethod
    def write_to(self, dst: Sink) -> int:
        """Write mapped output to dst until the command exits.

        Returns:
            Number of bytes written
        """

    def stream(self, dst: Sink) -> None:
        """Write mapped output to dst until the command exits."""
        self.write_to(dst)

    @abstractmethod
    def stream_lines(self, callback: Callable[[bytes], Any]) -> None:
        """Call callback with each mapped line, in order, until the command exits."""

    @abstractmethod
    def lines(self) -> list[str]:
        """Wait for the command to exit and return its mapped output lines."""

    @abstractmethod
    def text(self) -> str:
        """Wait for the command to exit and return its mapped output.

        One trailing newline is trimmed.
        """

    @abstractmethod
    def jq(self, query: str) -> bytes:
        """Wait for the command to exit and run a jq query against its output."""

    @abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read mapped output. Returns b"" once the output is exhausted."""

    @abstractmethod
    def readinto(self, buffer: bytearray | memoryview) -> int:
        """Read mapped output into buffer. Returns 0 once the output is exhausted."""

    @abstractmethod
    def wait(self) -> None:
        """Discard output and wait for the command to exit."""

    def readable(self) -> bool:
        return True


class ErrorOutput(Output):
    """Output for a command that never ran: every method raises the same error."""

    def __init__(self, err: BaseException) -> None:
        self.error = err

    def map(self, stage: LineMap) -> Output:
        return self

    def write_to(self, dst: Sink) -> int:
        raise self.error

    def stream_lines(self, callback: Callable[[bytes], Any]) -> None:
        raise self.error

    def lines(self) -> list[str]:
        raise self.error

    def text(self) -> str:
        raise self.error

    def jq(self, query: str) -> bytes:
        raise self.error

    def read(self, size: int = -1) -> bytes:
        raise self.error

    def readinto(self, buffer: bytearray | memoryview) -> int:
        raise self.error

    def wait(self) -> None:
        raise self.error


class CommandOutput(Output):
    """Output attached to a running process.

    Attributes:
        process: The started process and its plumbing
        config: Buffer settings
    """

    def __init__(self, process: ExecutedProcess, config: Config, hooks: Hooks) -> None:
        self.process = process
        self.config = config
        self._hooks = hooks
        self._chain = TransformChain()
        self._completion = Completion(process, hooks)

        self._lock = threading.Lock()
        self._consumed = False
        self._reader: OutputPipe | None = None

    @property
    def _pipe(self) -> OutputPipe:
        return self.process.pipe

    def _claim(self, event: str) -> None:
        with self._lock:
            if self._consumed:
                raise AlreadyConsumedError()
            self._consumed = True
        notify(self._hooks.on_event, event)

    def _start_wait(self) -> Future[BaseException | None]:
        return _start(self._completion.wait, name=f"runpipe-wait-{self.process.pid}")

    def _raise_terminal(
        self,
        wait_err: BaseException | None,
        consumer_err: BaseException | None,
    ) -> None:
        if wait_err is not None:
            raise wait_err
        if consumer_err is not None:
            notify(self._hooks.on_error, consumer_err)
            raise consumer_err

    def map(self, stage: LineMap) -> Output:
        with self._lock:
            if self._consumed:
                raise AlreadyConsumedError()
            self._chain.append(stage)
        return self

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def write_to(self, dst: Sink) -> int:
        return self._write_to(dst, "stream")

    def _write_to(self, dst: Sink, event: str) -> int:
        self._claim(event)
        waiter = self._start_wait()

        written = 0
        consumer_err: BaseException | None = None
        try:
            if not self._chain:
                # No transforms: pass bytes through untouched
                while True:
                    chunk = self._pipe.read(self.config.chunk_size)
                    if not chunk:
                        break
                    dst.write(chunk)
                    written += len(chunk)
            else:
                for content in self._chain.transformed(self._pipe, self.config.chunk_size):
                    dst.write(content)
                    written += len(content)
        except Exception as e:
            consumer_err = e
            self._pipe.close()

        self._raise_terminal(waiter.result(), consumer_err)
        return written

    def stream_lines(self, callback: Callable[[bytes], Any]) -> None:
        self._claim("stream_lines")
        waiter = self._start_wait()

        consumer_err: BaseException | None = None
        try:
            writer = LineWriter(callback)
            for content in self._chain.transformed(self._pipe, self.config.chunk_size):
                writer.write(content)
        except Exception as e:
            consumer_err = e
            self._pipe.close()

        self._raise_terminal(waiter.result(), consumer_err)

    # ------------------------------------------------------------------
    # Materializing
    # ------------------------------------------------------------------

    def _produce_lines(self, lines: queue.Queue[object]) -> None:
        """Scan and transform output into the line channel, then close it."""
        try:
            writer = LineWriter(lambda line: lines.put(_decode(line)))
            for content in self._chain.transformed(self._pipe, self.config.chunk_size):
                writer.write(content)
        except Exception:
            self._pipe.close()
            raise
        finally:
            lines.put(_DONE)

    def lines(self) -> list[str]:
        self._claim("lines")
        waiter = self._start_wait()

        channel: queue.Queue[object] = queue.Queue(maxsize=self.config.line_queue_size)
        producer = _start(self._produce_lines, channel, name=f"runpipe-lines-{self.process.pid}")

        results: list[str] = []
        while True:
            item = channel.get()
            if item is _DONE:
                break
            results.append(item)  # type: ignore[arg-type]

        try:
            self._raise_terminal(waiter.result(), producer.exception())
        except RunError as e:
            e.output = results
            raise
        return results

    def text(self) -> str:
        buffer = io.BytesIO()
        try:
            self._write_to(buffer, "text")
        except RunError as e:
            e.output = _trim_newline(_decode(buffer.getvalue()))
            raise
        return _trim_newline(_decode(buffer.getvalue()))

    def jq(self, query: str) -> bytes:
        program = build_jq(query)

        buffer = io.BytesIO()
        self._write_to(buffer, "jq")
        return exec_jq(program, buffer.getvalue())

    # ------------------------------------------------------------------
    # Incremental reads
    # ------------------------------------------------------------------

    def _start_reader(self) -> OutputPipe:
        with self._lock:
            if self._reader is not None:
                return self._reader
            if self._consumed:
                raise AlreadyConsumedError()
            self._consumed = True

            waiter = self._start_wait()
            if not self._chain:
                self._reader = self._pipe
            else:
                # Re-materialize the transformed stream once through a second pipe
                transformed = OutputPipe(self.config.buffer_size)
                _start(
                    self._pipe_transformed,
                    transformed,
                    waiter,
                    name=f"runpipe-read-{self.process.pid}",
                )
                self._reader = transformed
            reader = self._reader
        notify(self._hooks.on_event, "read")
        return reader

    def _pipe_transformed(
        self,
        transformed: OutputPipe,
        waiter: Future[BaseException | None],
    ) -> None:
        consumer_err: BaseException | None = None
        try:
            self._chain.pipe(self._pipe, transformed, self.config.chunk_size)
        except Exception as e:
            consumer_err = e
            self._pipe.close()

        wait_err = waiter.result()
        if wait_err is None and consumer_err is not None:
            notify(self._hooks.on_error, consumer_err)
        transformed.close_with_error(wait_err if wait_err is not None else consumer_err)

    def read(self, size: int = -1) -> bytes:
        return self._start_reader().read(size)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        return self._start_reader().readinto(buffer)

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wait(self) -> None:
        self._claim("wait")
        # Nobody reads the output; let the pumps discard it
        self._pipe.close()
        err = self._completion.wait()
        if err is not None:
            raise err


def attach(
    spec: ProcessSpec,
    stream: AttachMode | str = AttachMode.COMBINED,
    *,
    config: Config | None = None,
    hooks: Hooks | None = None,
    cancel: threading.Event | None = None,
) -> Output:
    """Start a process and return an Output aggregating its output.

    Start failures are not raised here; they are raised by every method of
    the returned Output.

    Args:
        spec: Process specification
        stream: Which output streams to aggregate (combined, stdout, stderr)
        config: Buffer settings (default: environment configuration)
        hooks: Instrumentation hooks
        cancel: Event that terminates the process when set

    Returns:
        Output for the started process
    """
    config = config or get_config()
    hooks = hooks or Hooks()

    try:
        mode = AttachMode(stream)
    except ValueError:
        return ErrorOutput(BuildError(f"unexpected attach type {stream!r}"))

    try:
        process = spawn(spec, mode, config)
    except RunError as e:
        logger.debug(f"Failed to start {spec.argv}: {e}")
        notify(hooks.on_error, e)
        return ErrorOutput(e)

    env = spec.env or {}
    notify(
        hooks.on_command_start,
        ExecutedCommand(
            args=list(spec.argv),
            dir=str(spec.cwd) if spec.cwd is not None else "",
            environ=[f"{k}={v}" for k, v in env.items()],
            pid=process.pid,
        ),
    )

    if cancel is not None:
        watch_cancel(process, cancel, config.term_timeout)

    return CommandOutput(process, config, hooks)
