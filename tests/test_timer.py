from __future__ import annotations

import asyncio

import pytest

from gp51sync._timer import AsyncioTimer


@pytest.mark.asyncio
async def test_callback_fires_after_delay() -> None:
    timer = AsyncioTimer()
    fired = asyncio.Event()

    async def callback() -> None:
        fired.set()

    timer.call_later(0.01, callback)
    await asyncio.wait_for(fired.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_cancel_before_firing() -> None:
    timer = AsyncioTimer()
    calls = 0

    async def callback() -> None:
        nonlocal calls
        calls += 1

    handle = timer.call_later(0.01, callback)
    handle.cancel()
    await asyncio.sleep(0.05)
    assert calls == 0


@pytest.mark.asyncio
async def test_cancel_does_not_interrupt_running_callback() -> None:
    timer = AsyncioTimer()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = False

    async def callback() -> None:
        nonlocal finished
        started.set()
        await release.wait()
        finished = True

    handle = timer.call_later(0, callback)
    await asyncio.wait_for(started.wait(), timeout=1.0)
    handle.cancel()
    assert timer.active_tasks == 1

    release.set()
    await timer.drain()
    assert finished
    assert timer.active_tasks == 0


@pytest.mark.asyncio
async def test_failing_callback_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    timer = AsyncioTimer()

    async def callback() -> None:
        raise RuntimeError("boom")

    timer.call_later(0, callback)
    await asyncio.sleep(0.02)
    await timer.drain()

    assert any(record.getMessage() == "Timer callback failed" for record in caplog.records)
