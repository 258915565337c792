"""Single-fire completion of a running command.

The coordinator waits for the process to exit, waits until every byte the
process wrote has been enqueued into the relay pipe, builds the terminal error
from the exit status and captured stderr, and only then closes the pipe's
write half with that error. Consumers therefore always see the complete output
before they see the error.

States: RUNNING -> EXIT_OBSERVED -> CLOSED. Only the first wait() performs the
transition; any later call gets AlreadyConsumedError without waiting again.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum

from .errors import AlreadyConsumedError, ExitError, SignalExitError
from .hooks import Hooks, notify
from .process import ExecutedProcess

__all__ = ["Completion", "CompletionState", "build_exit_error"]

logger = logging.getLogger(__name__)


class CompletionState(str, Enum):
    RUNNING = "running"
    EXIT_OBSERVED = "exit_observed"
    CLOSED = "closed"


def build_exit_error(returncode: int, stderr: str) -> ExitError | None:
    """Turn a process return code into an error, or None on success."""
    if returncode == 0:
        return None
    if returncode < 0:
        return SignalExitError(-returncode, stderr)
    return ExitError(returncode, stderr)


class Completion:
    """Coordinates process exit with relay pipe closure.

    Example:
        completion = Completion(process, hooks)
        err = completion.wait()  # None on success
    """

    def __init__(self, process: ExecutedProcess, hooks: Hooks) -> None:
        self._process = process
        self._hooks = hooks
        self._lock = threading.Lock()
        self._state = CompletionState.RUNNING
        self._error: BaseException | None = None

    @property
    def state(self) -> CompletionState:
        with self._lock:
            return self._state

    @property
    def error(self) -> BaseException | None:
        """Terminal error, once closed."""
        with self._lock:
            return self._error

    def wait(self) -> BaseException | None:
        """Wait for exit and close the relay pipe.

        Returns:
            The terminal error (None on success), or AlreadyConsumedError
            if wait() already ran
        """
        with self._lock:
            if self._state is not CompletionState.RUNNING:
                return AlreadyConsumedError()
            self._state = CompletionState.EXIT_OBSERVED

        process = self._process
        returncode = process.popen.wait()
        process.exited.set()

        # All output must be enqueued before the pipe is closed with an error
        process.join_io()

        stderr = process.stderr.consume()
        err: BaseException | None = build_exit_error(returncode, stderr)
        if err is None:
            err = process.input_error

        logger.debug(f"Subprocess completed pid={process.pid} returncode={returncode}")

        process.pipe.close_with_error(err)
        with self._lock:
            self._error = err
            self._state = CompletionState.CLOSED

        if err is not None:
            notify(self._hooks.on_error, err)
        notify(self._hooks.on_event, "done")
        return err
