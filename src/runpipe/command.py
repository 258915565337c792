"""Command construction.

    out = cmd("git log --oneline", "-n 5").dir(repo).run()
    for line in out.lines():
        ...

    bash("echo hello && echo world >&2").stdout().run().text()

Builder methods return the same Command, so calls chain. A command that could
not be built still returns an Output from run(); every method of that Output
raises the BuildError.
"""

from __future__ import annotations

import shlex
import threading
from collections.abc import Mapping, Sequence
from os import PathLike
from pathlib import Path

from .config import Config
from .errors import BuildError
from .hooks import Hooks
from .output import ErrorOutput, Output, attach
from .process import AttachMode, InputSource, ProcessSpec

__all__ = ["Command", "bash", "cmd"]


class Command:
    """Builds a command for execution."""

    def __init__(self, argv: Sequence[str] | None = None, build_error: BuildError | None = None) -> None:
        self._argv = list(argv or [])
        self._build_error = build_error
        self._dir: Path | None = None
        self._env: dict[str, str] = {}
        self._inputs: list[InputSource] = []
        self._attach = AttachMode.COMBINED
        self._cancel: threading.Event | None = None
        self._hooks: Hooks | None = None
        self._config: Config | None = None

    @property
    def args(self) -> list[str]:
        return list(self._argv)

    def dir(self, path: str | PathLike[str]) -> Command:
        """Set the directory this command runs in."""
        self._dir = Path(path)
        return self

    def env(self, env: Mapping[str, str]) -> Command:
        """Add environment variables on top of the inherited environment."""
        self._env.update(env)
        return self

    def environ(self, environ: Sequence[str]) -> Command:
        """Add "KEY=value" entries, e.g. from a saved environment listing."""
        for entry in environ:
            key, sep, value = entry.partition("=")
            if not sep:
                continue
            self._env[key] = value
        return self

    def input(self, source: InputSource) -> Command:
        """Pipe source to the command's stdin.

        source may be bytes, str, or anything with read(size), including the
        Output of another command. Multiple inputs are written in order.
        """
        self._inputs.append(source)
        return self

    def reset_input(self) -> Command:
        """Drop every input added so far."""
        self._inputs.clear()
        return self

    def stdout(self) -> Command:
        """Aggregate only stdout."""
        self._attach = AttachMode.STDOUT
        return self

    def stderr(self) -> Command:
        """Aggregate only stderr."""
        self._attach = AttachMode.STDERR
        return self

    def cancel_on(self, event: threading.Event) -> Command:
        """Terminate the command's process group when event is set."""
        self._cancel = event
        return self

    def hooks(self, hooks: Hooks) -> Command:
        self._hooks = hooks
        return self

    def config(self, config: Config) -> Command:
        self._config = config
        return self

    def spec(self) -> ProcessSpec:
        """Return the process specification this command describes."""
        return ProcessSpec(
            argv=list(self._argv),
            cwd=self._dir,
            env=dict(self._env) if self._env else None,
            stdin=tuple(self._inputs),
        )

    def run(self) -> Output:
        """Start the command and return its Output (combined output by default)."""
        if self._build_error is not None:
            return ErrorOutput(self._build_error)
        if not self._argv:
            return ErrorOutput(BuildError("command not instantiated"))

        return attach(
            self.spec(),
            self._attach,
            config=self._config,
            hooks=self._hooks,
            cancel=self._cancel,
        )


def cmd(*parts: str) -> Command:
    """Join parts with spaces and split the result with shell quoting rules.

        cmd("echo", "'hello world'")  # argv: ["echo", "hello world"]
    """
    try:
        argv = shlex.split(" ".join(parts))
    except ValueError as e:
        return Command(build_error=BuildError(f"provided args are invalid: {e}"))
    if not argv:
        return Command(build_error=BuildError("provided args are invalid: empty command"))
    return Command(argv)


def bash(*parts: str) -> Command:
    """Run the joined parts as a bash script."""
    return Command(["bash", "-c", " ".join(parts)])
