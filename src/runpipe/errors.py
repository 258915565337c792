"""Error taxonomy for command execution and output aggregation.

Every consumption call on an Output raises at most one of these. Process exit
failures always carry the exit code and the trimmed stderr captured while the
command ran, so callers never need to read stderr separately to explain a
failure.
"""

from __future__ import annotations

import signal
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "AlreadyConsumedError",
    "BuildError",
    "ExitCoder",
    "ExitError",
    "JQError",
    "RunError",
    "SignalExitError",
    "StartError",
    "exit_code",
]


class RunError(Exception):
    """Base class for all errors raised by runpipe.

    Attributes:
        output: Partial result collected before the failure (a list of lines
            for Output.lines(), text for Output.text()), or None.
    """

    output: Any = None


class BuildError(RunError):
    """The command could not be built (e.g. unbalanced quotes)."""


class StartError(RunError):
    """The process could not be started."""

    def __init__(self, argv: list[str], cause: OSError) -> None:
        self.argv = argv
        self.cause = cause
        super().__init__(f"{argv[0] if argv else '<empty>'}: {cause.strerror or cause}")


class AlreadyConsumedError(RunError):
    """A terminal operation was already called on this Output."""

    def __init__(self) -> None:
        super().__init__("output aggregator has already been finalized")


class ExitError(RunError):
    """The process exited with a non-zero status.

    Attributes:
        exit_code: The process exit status.
        stderr: Captured stderr, whitespace-trimmed.
    """

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(self._describe())

    def _describe(self) -> str:
        status = f"exit status {self.exit_code}"
        if not self.stderr:
            return status
        return f"{status}: {self.stderr}"


class SignalExitError(ExitError):
    """The process was terminated by a signal.

    exit_code follows the subprocess convention of -signum.
    """

    def __init__(self, signum: int, stderr: str = "") -> None:
        self.signal = signum
        super().__init__(-signum, stderr)

    def _describe(self) -> str:
        try:
            name = signal.Signals(self.signal).name
        except ValueError:
            name = str(self.signal)
        status = f"signal: {name}"
        if not self.stderr:
            return status
        return f"{status}: {self.stderr}"


class JQError(RunError):
    """A jq query failed to compile or evaluate."""


@runtime_checkable
class ExitCoder(Protocol):
    """An error that denotes an exit code to exit with."""

    exit_code: int


def exit_code(err: BaseException | None) -> int:
    """Return the exit code associated with err.

    Returns 0 if err is None, the carried code if err exposes an integer
    ``exit_code``, and 1 for any other error.
    """
    if err is None:
        return 0
    code = getattr(err, "exit_code", None)
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    return 1
