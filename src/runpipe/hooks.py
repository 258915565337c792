"""Best-effort instrumentation hooks for command execution.

Hooks observe a command's lifecycle: the command starting, named events along
the way (which consumption method was used, when it finished) and the terminal
error. They are side channels only. A hook that raises is logged and ignored;
it never changes what a consumption call returns or raises.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "ExecutedCommand",
    "Hooks",
    "LoggingHooks",
    "MultiHooks",
    "log_commands",
    "notify",
]

logger = logging.getLogger(__name__)


class ExecutedCommand(BaseModel):
    """Description of a started command.

    Attributes:
        args: Command line arguments
        dir: Working directory ("" = current directory)
        environ: Explicitly set environment entries as "KEY=value"
        pid: Process ID
        timestamp: Unix time the process was started
    """

    model_config = ConfigDict(frozen=True)

    args: list[str]
    dir: str = ""
    environ: list[str] = Field(default_factory=list)
    pid: int | None = None
    timestamp: float = Field(default_factory=time.time)


class Hooks:
    """No-op hooks. Subclass and override what you need."""

    def on_command_start(self, command: ExecutedCommand) -> None:
        pass

    def on_event(self, name: str) -> None:
        pass

    def on_error(self, err: BaseException) -> None:
        pass


class LoggingHooks(Hooks):
    """Hooks that write the command lifecycle to a logger."""

    def __init__(self, log: logging.Logger | None = None, level: int = logging.DEBUG) -> None:
        self._log = log or logger
        self._level = level
        self._args: list[str] = []

    def on_command_start(self, command: ExecutedCommand) -> None:
        self._args = command.args
        self._log.log(
            self._level,
            f"Command started pid={command.pid} args={command.args} dir={command.dir or '.'}",
        )

    def on_event(self, name: str) -> None:
        self._log.log(self._level, f"Command event {name} args={self._args}")

    def on_error(self, err: BaseException) -> None:
        self._log.log(self._level, f"Command failed args={self._args}: {err}")


class MultiHooks(Hooks):
    """Fan out to several hooks in order."""

    def __init__(self, hooks: Iterable[Hooks]) -> None:
        self._hooks = list(hooks)

    def on_command_start(self, command: ExecutedCommand) -> None:
        for hook in self._hooks:
            notify(hook.on_command_start, command)

    def on_event(self, name: str) -> None:
        for hook in self._hooks:
            notify(hook.on_event, name)

    def on_error(self, err: BaseException) -> None:
        for hook in self._hooks:
            notify(hook.on_error, err)


class _CommandLogger(Hooks):
    def __init__(self, callback: Callable[[ExecutedCommand], None]) -> None:
        self._callback = callback

    def on_command_start(self, command: ExecutedCommand) -> None:
        self._callback(command)


def log_commands(callback: Callable[[ExecutedCommand], None]) -> Hooks:
    """Build hooks that pass every started command to callback."""
    return _CommandLogger(callback)


def notify(method: Callable[..., None], *args: object) -> None:
    """Invoke a hook method, swallowing anything it raises."""
    try:
        method(*args)
    except Exception as e:  # noqa: BLE001
        logger.debug(f"Instrumentation hook {getattr(method, '__qualname__', method)} failed: {e}")
