"""Process spawning with isolated process groups and threaded output pumps.

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Pump threads that drain stdout/stderr into an OutputPipe as fast as the
  child writes, so the child never blocks on a full OS pipe
- A private copy of stderr for building exit errors
- Stdin feeding from bytes or any readable (including another Output)
- Reliable termination (SIGTERM -> timeout -> SIGKILL) for cancellation

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Cancellation terminates the process group, not just the main process
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import tempfile
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Union

from .config import Config
from .errors import BuildError, StartError
from .relay import OutputPipe
from .scanner import Readable

__all__ = [
    "AttachMode",
    "ExecutedProcess",
    "InputSource",
    "ProcessSpec",
    "StderrCapture",
    "spawn",
    "terminate_process",
    "watch_cancel",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

InputSource = Union[bytes, str, Readable]


class AttachMode(str, Enum):
    """Which process output streams feed the aggregated output.

    - COMBINED: stdout and stderr, interleaved as they arrive
    - STDOUT: stdout only
    - STDERR: stderr only
    """

    COMBINED = "combined"
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = current directory)
        env: Extra environment variables, set on top of the inherited
            environment (or on top of nothing when inherit_env is False)
        stdin: Input sources written to stdin in order (empty = no stdin)
        inherit_env: Whether the child inherits the parent environment
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin: tuple[InputSource, ...] = ()
    inherit_env: bool = True


class StderrCapture:
    """Thread-safe copy of everything the process wrote to stderr.

    Held in memory up to max_size bytes, then spooled to a temporary file.
    """

    def __init__(self, max_size: int) -> None:
        self._file = tempfile.SpooledTemporaryFile(max_size=max_size)
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            return self._file.write(data)

    def consume(self) -> str:
        """Return the captured text, trimmed, and release the storage."""
        with self._lock:
            if self._file.closed:
                return ""
            self._file.seek(0)
            data = self._file.read()
            self._file.close()
        return data.decode("utf-8", errors="replace").strip()


@dataclass
class ExecutedProcess:
    """A started process and the plumbing attached to it.

    Attributes:
        spec: The specification the process was started from
        popen: Underlying subprocess handle
        pipe: Relay pipe receiving the attached output streams
        stderr: Private copy of stderr
        pumps: Threads draining stdout/stderr
        feeder: Thread writing stdin, if any
        input_error: Error raised while reading an input source
        exited: Set once the process exit has been observed
    """

    spec: ProcessSpec
    popen: subprocess.Popen[bytes]
    pipe: OutputPipe
    stderr: StderrCapture
    pumps: list[threading.Thread] = field(default_factory=list)
    feeder: threading.Thread | None = None
    input_error: BaseException | None = None
    exited: threading.Event = field(default_factory=threading.Event)

    @property
    def pid(self) -> int:
        return self.popen.pid

    def join_io(self) -> None:
        """Wait until every byte the process wrote has been enqueued."""
        for pump in self.pumps:
            pump.join()
        if self.feeder is not None:
            self.feeder.join()


def _build_subprocess_kwargs(spec: ProcessSpec) -> dict[str, Any]:
    """Build platform-specific Popen kwargs."""
    kwargs: dict[str, Any] = {}

    if spec.env is not None or not spec.inherit_env:
        env = dict(os.environ) if spec.inherit_env else {}
        env.update(spec.env or {})
        kwargs["env"] = env
    if spec.cwd is not None:
        kwargs["cwd"] = spec.cwd

    if IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    return kwargs


def _pump(src: IO[bytes], sinks: Sequence[Any], chunk_size: int) -> None:
    """Copy src into every sink until end of stream."""
    try:
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            for sink in sinks:
                sink.write(chunk)
    finally:
        src.close()


def _feed(process: ExecutedProcess, sources: Sequence[InputSource], chunk_size: int) -> None:
    """Write every input source to the process stdin, then close it."""
    stdin = process.popen.stdin
    assert stdin is not None
    try:
        for source in sources:
            if isinstance(source, str):
                source = source.encode("utf-8")
            if isinstance(source, (bytes, bytearray)):
                stdin.write(source)
                continue
            while True:
                chunk = source.read(chunk_size)
                if not chunk:
                    break
                stdin.write(chunk)
    except BrokenPipeError:
        logger.debug(f"Process closed stdin early pid={process.pid}")
    except Exception as e:
        # Surfaced by the completion coordinator if the process itself succeeds
        logger.debug(f"Reading input failed pid={process.pid}: {e}")
        process.input_error = e
    finally:
        try:
            stdin.close()
        except BrokenPipeError:
            pass


def spawn(spec: ProcessSpec, attach: AttachMode, config: Config) -> ExecutedProcess:
    """Start a process and attach its output to a new relay pipe.

    Args:
        spec: Process specification
        attach: Which output streams feed the relay pipe
        config: Buffer settings

    Returns:
        The started process with its pumps running

    Raises:
        BuildError: If argv is empty or argv or env hold invalid values
        StartError: If the process could not be started
    """
    if not spec.argv:
        raise BuildError("command not instantiated: empty argument list")

    kwargs = _build_subprocess_kwargs(spec)
    pipe = OutputPipe(config.buffer_size)
    stderr_copy = StderrCapture(config.buffer_size)

    stdout_target = subprocess.DEVNULL if attach == AttachMode.STDERR else subprocess.PIPE

    try:
        # stdin=None would inherit the parent's stdin; use DEVNULL instead
        popen = subprocess.Popen(
            spec.argv,
            stdin=subprocess.PIPE if spec.stdin else subprocess.DEVNULL,
            stdout=stdout_target,
            stderr=subprocess.PIPE,
            bufsize=0,
            **kwargs,
        )
    except OSError as e:
        raise StartError(list(spec.argv), e) from e
    except (ValueError, TypeError) as e:
        raise BuildError(f"provided args are invalid: {e}") from e

    logger.debug(
        f"Started subprocess pid={popen.pid} "
        f"argv={spec.argv[0]} cwd={spec.cwd} attach={attach.value}"
    )

    process = ExecutedProcess(spec=spec, popen=popen, pipe=pipe, stderr=stderr_copy)

    if popen.stdout is not None:
        process.pumps.append(
            threading.Thread(
                target=_pump,
                args=(popen.stdout, [pipe], config.chunk_size),
                name=f"runpipe-stdout-{popen.pid}",
                daemon=True,
            )
        )

    stderr_sinks: list[Any] = [stderr_copy]
    if attach != AttachMode.STDOUT:
        stderr_sinks.append(pipe)
    assert popen.stderr is not None
    process.pumps.append(
        threading.Thread(
            target=_pump,
            args=(popen.stderr, stderr_sinks, config.chunk_size),
            name=f"runpipe-stderr-{popen.pid}",
            daemon=True,
        )
    )

    if spec.stdin:
        process.feeder = threading.Thread(
            target=_feed,
            args=(process, spec.stdin, config.chunk_size),
            name=f"runpipe-stdin-{popen.pid}",
            daemon=True,
        )

    for pump in process.pumps:
        pump.start()
    if process.feeder is not None:
        process.feeder.start()

    return process


def watch_cancel(process: ExecutedProcess, cancel: threading.Event, term_timeout: float) -> threading.Thread:
    """Terminate the process group once cancel is set.

    The watcher exits on its own when the process exit is observed first.
    """

    def _watch() -> None:
        while not process.exited.is_set():
            if cancel.wait(timeout=0.05):
                if not process.exited.is_set():
                    logger.debug(f"Cancellation requested pid={process.pid}")
                    terminate_process(process.popen, term_timeout)
                return

    watcher = threading.Thread(target=_watch, name=f"runpipe-cancel-{process.pid}", daemon=True)
    watcher.start()
    return watcher


def terminate_process(
    popen: subprocess.Popen[bytes],
    term_timeout: float,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
) -> None:
    """Terminate a subprocess gracefully, then forcefully if needed.

    Termination strategy:
    1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
    2. Wait up to term_timeout for graceful exit
    3. If still running, send SIGKILL (or kill() on Windows)
    4. Wait up to kill_timeout for forced exit

    Args:
        popen: The subprocess to terminate
        term_timeout: Seconds to wait after the graceful signal
        kill_timeout: Seconds to wait after the forced kill
    """
    pid = popen.pid
    logger.debug(f"Terminating subprocess pid={pid}")

    try:
        if IS_WINDOWS:
            _windows_terminate(popen)
        else:
            _posix_signal(popen, signal.SIGTERM)

        try:
            popen.wait(timeout=term_timeout)
            logger.debug(f"Subprocess terminated gracefully pid={pid} returncode={popen.returncode}")
            return
        except subprocess.TimeoutExpired:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        if IS_WINDOWS:
            popen.kill()
        else:
            _posix_signal(popen, signal.SIGKILL)

        try:
            popen.wait(timeout=kill_timeout)
            logger.debug(f"Subprocess killed pid={pid} returncode={popen.returncode}")
        except subprocess.TimeoutExpired:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")

    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={pid}")
    except OSError as e:
        logger.warning(f"Error terminating subprocess pid={pid}: {e}")


def _posix_signal(popen: subprocess.Popen[bytes], sig: signal.Signals) -> None:
    """Send sig to the process group on POSIX systems."""
    try:
        # Process group ID equals pid because of start_new_session
        pgid = os.getpgid(popen.pid)
        os.killpg(pgid, sig)
        logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, falling back to signalling the process: {e}")
        popen.send_signal(sig)


def _windows_terminate(popen: subprocess.Popen[bytes]) -> None:
    """Send CTRL_BREAK_EVENT on Windows."""
    try:
        # Works because of CREATE_NEW_PROCESS_GROUP
        os.kill(popen.pid, signal.CTRL_BREAK_EVENT)
        logger.debug(f"Sent CTRL_BREAK_EVENT to pid={popen.pid}")
    except OSError as e:
        logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
        popen.terminate()
