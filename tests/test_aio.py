"""Async adapter tests."""

from __future__ import annotations

import io
from contextlib import aclosing

import pytest

from runpipe import Command, ExitError, aio


class TestAdapters:
    """Blocking consumers run in worker threads."""

    @pytest.mark.asyncio
    async def test_lines(self, fake):
        out = Command(fake("--out", "a\\nb\\n")).run()
        assert await aio.lines(out) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_text(self, fake):
        assert await aio.text(Command(fake("--out", "hello\\n")).run()) == "hello"

    @pytest.mark.asyncio
    async def test_stream(self, fake):
        buf = io.BytesIO()
        await aio.stream(Command(fake("--out", "x")).run(), buf)
        assert buf.getvalue() == b"x"

    @pytest.mark.asyncio
    async def test_jq(self, fake):
        out = Command(fake("--out", '{"a":[1,2]}')).run()
        assert await aio.jq(out, ".a | length") == b"2"

    @pytest.mark.asyncio
    async def test_wait_error(self, fake):
        with pytest.raises(ExitError) as exc_info:
            await aio.wait(Command(fake("--err", "bad", "--exit-code", "3")).run())
        assert str(exc_info.value) == "exit status 3: bad"


class TestIterLines:
    """aio.iter_lines()."""

    @pytest.mark.asyncio
    async def test_all_lines(self, fake):
        out = Command(fake("--out", "one\\n\\nthree\\n")).run()
        assert [line async for line in aio.iter_lines(out)] == ["one", "", "three"]

    @pytest.mark.asyncio
    async def test_many_lines_small_buffer(self, fake):
        out = Command(fake("--bytes", str(37 * 500))).run()
        count = 0
        async for _ in aio.iter_lines(out, buffer_size=2):
            count += 1
        assert count == 500

    @pytest.mark.asyncio
    async def test_error_after_lines(self, fake):
        out = Command(fake("--out", "partial\\n", "--exit-code", "7")).stdout().run()
        seen = []
        with pytest.raises(ExitError) as exc_info:
            async for line in aio.iter_lines(out):
                seen.append(line)
        assert seen == ["partial"]
        assert exc_info.value.exit_code == 7

    @pytest.mark.asyncio
    async def test_early_exit(self, fake):
        """Stopping early releases the producer; the command still finishes."""
        out = Command(fake("--bytes", str(37 * 5000))).run()
        async with aclosing(aio.iter_lines(out, buffer_size=1)) as lines:
            async for line in lines:
                assert line == "0123456789abcdefghijklmnopqrstuvwxyz"
                break

        out.process.popen.wait(timeout=30)
