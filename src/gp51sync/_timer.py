"""Timer abstraction shared by the polling scheduler and the health monitor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

_logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Timer(Protocol):
    """Schedules an async callback once after *delay* seconds."""

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        ...


class AsyncioTimer:
    """:class:`Timer` on top of the running event loop.

    Cancelling a handle only prevents a callback that has not fired yet;
    a callback that already started runs to completion as its own task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), self._spawn, callback)

    def _spawn(self, callback: TimerCallback) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Timer callback failed", exc_info=exc)

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for callbacks that already fired to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
