from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from gp51sync._timer import TimerCallback
from gp51sync.models.position import PositionFix
from gp51sync.models.results import ApiFailure, AuthOk, AuthResult, PositionsOk, PositionsResult

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Mutable clock; ``clock()`` returns the current fake time."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start
        self.monotonic_value = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.monotonic_value

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.monotonic_value += seconds


@dataclass
class _Entry:
    when: float
    delay: float
    callback: TimerCallback
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Timer driven explicitly by the test; callbacks are awaited inline."""

    def __init__(self) -> None:
        self.now = 0.0
        self._entries: list[_Entry] = []

    def call_later(self, delay: float, callback: TimerCallback) -> _Entry:
        entry = _Entry(when=self.now + delay, delay=delay, callback=callback)
        self._entries.append(entry)
        return entry

    @property
    def pending(self) -> list[_Entry]:
        return sorted((e for e in self._entries if not e.cancelled), key=lambda e: e.when)

    def pending_for(self, name: str) -> list[_Entry]:
        return [e for e in self.pending if getattr(e.callback, "__name__", "") == name]

    async def run_next(self) -> _Entry | None:
        pending = self.pending
        if not pending:
            return None
        entry = pending[0]
        self._entries.remove(entry)
        self.now = max(self.now, entry.when)
        await entry.callback()
        return entry

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [e for e in self.pending if e.when <= target]
            if not due:
                break
            await self.run_next()
        self.now = target


@dataclass
class FakeProvider:
    """In-process telemetry provider.

    ``positions`` maps device id to the fix returned for it; devices not in
    the map are omitted from responses.
    """

    token: str = "tok-fresh"
    valid_tokens: set[str] = field(default_factory=set)
    positions: dict[str, PositionFix] = field(default_factory=dict)
    auth_failure: str | None = None
    position_failure: str | None = None
    connectivity_error: Exception | None = None
    auth_gate: asyncio.Event | None = None
    fetch_gate: asyncio.Event | None = None
    auth_calls: int = 0
    probe_calls: int = 0
    fetch_calls: list[list[str]] = field(default_factory=list)

    async def authenticate(self, username: str, password_hash: str) -> AuthResult:
        self.auth_calls += 1
        if self.auth_gate is not None:
            await self.auth_gate.wait()
        if self.auth_failure is not None:
            return ApiFailure(cause=self.auth_failure, status=1, action="login")
        self.valid_tokens.add(self.token)
        return AuthOk(token=self.token, username=username)

    async def fetch_positions(
        self,
        device_ids: Sequence[str],
        token: str,
        last_query_time: datetime | None = None,
    ) -> PositionsResult:
        self.fetch_calls.append(list(device_ids))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.position_failure is not None:
            return ApiFailure(cause=self.position_failure, status=2, action="lastposition")
        return PositionsOk(records=[self.positions[d] for d in device_ids if d in self.positions])

    async def test_connectivity(self, token: str) -> bool:
        self.probe_calls += 1
        if self.connectivity_error is not None:
            raise self.connectivity_error
        return token in self.valid_tokens


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
