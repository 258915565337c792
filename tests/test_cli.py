"""CLI tests."""

from __future__ import annotations

import io
import json
import signal
import sys

import pytest

from runpipe import __version__
from runpipe.cli import build_parser, run


class TestParser:

    def test_command_remainder(self):
        args = build_parser().parse_args(["--stdout", "ls", "-la"])
        assert args.stdout is True
        assert args.command == ["ls", "-la"]

    def test_stream_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--stdout", "--stderr", "ls"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_no_command(self):
        with pytest.raises(SystemExit) as exc_info:
            run([])
        assert exc_info.value.code == 2


class TestRun:

    def test_stream(self, fake, capsysbinary):
        assert run(["--", *fake("--out", "hello\\nworld\\n")]) == 0
        assert capsysbinary.readouterr().out == b"hello\nworld\n"

    def test_exit_code_propagated(self, fake, capsysbinary):
        assert run(["--", *fake("--err", "whoopsie", "--exit-code", "3")]) == 3
        captured = capsysbinary.readouterr()
        assert b"runpipe: exit status 3: whoopsie" in captured.err

    def test_stdout_only(self, fake, capsysbinary):
        assert run(["--stdout", "--", *fake("--out", "o\\n", "--err", "e\\n")]) == 0
        assert capsysbinary.readouterr().out == b"o\n"

    def test_stderr_only(self, fake, capsysbinary):
        assert run(["--stderr", "--", *fake("--out", "o\\n", "--err", "e\\n")]) == 0
        assert capsysbinary.readouterr().out == b"e\n"

    def test_lines(self, fake, capsysbinary):
        assert run(["--lines", "--", *fake("--out", "a\\nb\\n")]) == 0
        assert json.loads(capsysbinary.readouterr().out) == ["a", "b"]

    def test_jq(self, fake, capsysbinary):
        assert run(["--jq", ".a", "--", *fake("--out", '{"a":1}')]) == 0
        assert capsysbinary.readouterr().out == b"1\n"

    def test_map_jq(self, fake, capsysbinary):
        argv = ["--map-jq", ".msg", "--", *fake("--out", '{"msg":"x"}\\n{"msg":"y"}\\n')]
        assert run(argv) == 0
        assert capsysbinary.readouterr().out == b'"x"\n"y"\n'

    def test_bad_map_jq(self, fake, capsysbinary):
        assert run(["--map-jq", "{", "--", *fake()]) == 1
        assert b"jq.compile" in capsysbinary.readouterr().err

    def test_missing_binary(self, capsysbinary):
        assert run(["--", "runpipe-no-such-binary-xyz"]) == 1
        assert b"runpipe-no-such-binary-xyz" in capsysbinary.readouterr().err

    def test_buffer_size(self, fake, capsysbinary):
        assert run(["--buffer-size", "64", "--stdout", "--", *fake("--bytes", "10000")]) == 0
        assert len(capsysbinary.readouterr().out) == 10000

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
    def test_signal_exit_code(self, capsysbinary):
        """A child killed by a signal exits like a shell would, 128 + signum."""
        argv = [sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"]
        assert run(["--", *argv]) == 128 + signal.SIGTERM

    def test_broken_stdout(self, fake, monkeypatch, capsys):
        class _ClosedPipe(io.RawIOBase):
            def writable(self):
                return True

            def write(self, data):
                raise BrokenPipeError(32, "Broken pipe")

        monkeypatch.setattr(sys, "stdout", io.TextIOWrapper(_ClosedPipe()))
        assert run(["--", *fake("--out", "hello\\n")]) == 1
        assert "runpipe: [Errno 32] Broken pipe" in capsys.readouterr().err
