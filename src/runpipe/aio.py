"""Async adapters for Output.

Consumption methods block, so these run them in anyio worker threads. They
work under any anyio backend (asyncio or trio).

    out = cmd("git status --porcelain").run()
    changed = await aio.lines(out)

    async for line in aio.iter_lines(cmd("tail -n 100 app.log").run()):
        ...
"""

from __future__ import annotations

import queue
import threading
from collections.abc import AsyncIterator

import anyio.to_thread

from .output import Output
from .transforms import Sink

__all__ = ["iter_lines", "jq", "lines", "stream", "text", "wait"]

_DONE = object()


class _IterationStopped(Exception):
    """The async consumer stopped iterating early."""


async def lines(out: Output) -> list[str]:
    return await anyio.to_thread.run_sync(out.lines)


async def text(out: Output) -> str:
    return await anyio.to_thread.run_sync(out.text)


async def stream(out: Output, dst: Sink) -> None:
    await anyio.to_thread.run_sync(out.stream, dst)


async def jq(out: Output, query: str) -> bytes:
    return await anyio.to_thread.run_sync(out.jq, query)


async def wait(out: Output) -> None:
    await anyio.to_thread.run_sync(out.wait)


async def iter_lines(out: Output, buffer_size: int = 64) -> AsyncIterator[str]:
    """Yield decoded output lines as they arrive.

    The terminal error of the command, if any, is raised after the last line.
    Stopping iteration early discards the rest of the output; the command
    still runs to completion in the background.
    """
    channel: queue.Queue[object] = queue.Queue(maxsize=buffer_size)
    stop = threading.Event()
    failure: list[BaseException] = []

    def _put(item: object) -> None:
        while not stop.is_set():
            try:
                channel.put(item, timeout=0.1)
                return
            except queue.Full:
                continue
        raise _IterationStopped()

    def _produce() -> None:
        try:
            out.stream_lines(lambda line: _put(line.decode("utf-8", errors="replace")))
        except _IterationStopped:
            pass
        except BaseException as e:  # noqa: BLE001
            failure.append(e)
        finally:
            try:
                _put(_DONE)
            except _IterationStopped:
                pass

    threading.Thread(target=_produce, name="runpipe-aio-lines", daemon=True).start()

    try:
        while True:
            item = await anyio.to_thread.run_sync(channel.get, abandon_on_cancel=True)
            if item is _DONE:
                break
            yield item  # type: ignore[misc]
    finally:
        stop.set()
        # Wake a worker left blocked in get() by a cancelled await
        try:
            channel.put_nowait(_DONE)
        except queue.Full:
            pass

    if failure:
        raise failure[0]
