"""Instrumentation hook tests."""

from __future__ import annotations

import io
import logging
import threading

import pytest
from pydantic import ValidationError

from runpipe import (
    AlreadyConsumedError,
    Command,
    ExecutedCommand,
    ExitError,
    Hooks,
    LoggingHooks,
    MultiHooks,
    log_commands,
)


class Recorder(Hooks):
    def __init__(self) -> None:
        self.started: list[ExecutedCommand] = []
        self.events: list[str] = []
        self.errors: list[BaseException] = []

    def on_command_start(self, command: ExecutedCommand) -> None:
        self.started.append(command)

    def on_event(self, name: str) -> None:
        self.events.append(name)

    def on_error(self, err: BaseException) -> None:
        self.errors.append(err)


class Exploding(Hooks):
    def on_command_start(self, command: ExecutedCommand) -> None:
        raise RuntimeError("hook failed")

    def on_event(self, name: str) -> None:
        raise RuntimeError("hook failed")

    def on_error(self, err: BaseException) -> None:
        raise RuntimeError("hook failed")


class TestLogCommands:
    """log_commands()."""

    def test_captures_command(self, fake, tmp_path):
        seen: list[ExecutedCommand] = []
        argv = fake("--out", "x")
        out = Command(argv).dir(tmp_path).env({"A": "1"}).hooks(log_commands(seen.append)).run()
        out.wait()

        assert len(seen) == 1
        assert seen[0].args == argv
        assert seen[0].dir == str(tmp_path)
        assert seen[0].environ == ["A=1"]
        assert seen[0].pid == out.process.pid
        assert seen[0].model_dump()["args"] == argv

    def test_record_is_frozen(self):
        command = ExecutedCommand(args=["ls"])
        with pytest.raises(ValidationError):
            command.pid = 1  # type: ignore[misc]

    def test_not_called_on_start_failure(self):
        seen: list[ExecutedCommand] = []
        Command(["runpipe-no-such-binary-xyz"]).hooks(log_commands(seen.append)).run()
        assert seen == []


class TestEvents:
    """Lifecycle events."""

    @pytest.mark.parametrize(
        "consume,event",
        [
            (lambda out: out.text(), "text"),
            (lambda out: out.lines(), "lines"),
            (lambda out: out.stream(io.BytesIO()), "stream"),
            (lambda out: out.stream_lines(lambda line: None), "stream_lines"),
            (lambda out: out.read(), "read"),
        ],
    )
    def test_consumption_event(self, fake, consume, event):
        hooks = Recorder()
        out = Command(fake("--out", "1\\n")).hooks(hooks).run()
        consume(out)
        assert hooks.events[0] == event

    def test_done_after_wait(self, fake):
        hooks = Recorder()
        Command(fake("--out", "1\\n")).hooks(hooks).run().wait()
        assert hooks.events == ["wait", "done"]

    def test_done_after_text(self, fake):
        hooks = Recorder()
        Command(fake("--out", "1\\n")).hooks(hooks).run().text()
        assert hooks.events == ["text", "done"]

    def test_error_reported(self, fake):
        hooks = Recorder()
        with pytest.raises(ExitError) as exc_info:
            Command(fake("--exit-code", "3")).hooks(hooks).run().text()
        assert hooks.errors == [exc_info.value]

    def test_start_error_reported(self):
        hooks = Recorder()
        Command(["runpipe-no-such-binary-xyz"]).hooks(hooks).run()
        assert len(hooks.errors) == 1

    def test_raising_hooks_ignored(self, fake):
        """A failing hook never changes the result."""
        out = Command(fake("--out", "ok\\n")).hooks(Exploding()).run()
        assert out.text() == "ok"

    def test_raising_hooks_keep_error(self, fake):
        out = Command(fake("--exit-code", "4")).hooks(Exploding()).run()
        with pytest.raises(ExitError):
            out.wait()

    def test_multi_hooks(self, fake):
        first, second = Recorder(), Recorder()
        hooks = MultiHooks([first, Exploding(), second])
        Command(fake()).hooks(hooks).run().wait()
        assert len(first.started) == len(second.started) == 1
        assert first.events == second.events

    def test_hook_may_call_back_into_output(self, fake):
        """An event hook that touches the output does not block the consumer."""

        class Reentrant(Hooks):
            def __init__(self) -> None:
                self.out = None
                self.errors: list[BaseException] = []

            def on_event(self, name: str) -> None:
                if name == "read":
                    try:
                        self.out.map(lambda line, dst: dst.write(line))
                    except AlreadyConsumedError as e:
                        self.errors.append(e)

        hooks = Reentrant()
        out = Command(fake("--out", "x\\n")).hooks(hooks).run()
        hooks.out = out
        result: list[bytes] = []

        reader = threading.Thread(target=lambda: result.append(out.read()), daemon=True)
        reader.start()
        reader.join(timeout=10)

        assert not reader.is_alive()
        assert result == [b"x\n"]
        assert len(hooks.errors) == 1


class TestLoggingHooks:
    """LoggingHooks."""

    def test_logs_lifecycle(self, fake, caplog):
        with caplog.at_level(logging.DEBUG, logger="runpipe.hooks"):
            with pytest.raises(ExitError):
                Command(fake("--exit-code", "2")).hooks(LoggingHooks()).run().wait()

        assert "Command started" in caplog.text
        assert "Command event wait" in caplog.text
        assert "exit status 2" in caplog.text

    def test_custom_logger_and_level(self, fake, caplog):
        log = logging.getLogger("tests.commands")
        with caplog.at_level(logging.INFO, logger="tests.commands"):
            Command(fake()).hooks(LoggingHooks(log, logging.INFO)).run().wait()
        assert any(record.name == "tests.commands" for record in caplog.records)
