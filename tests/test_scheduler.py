from __future__ import annotations

import asyncio

import pytest

from conftest import T0, ManualTimer
from gp51sync.config import SyncConfig
from gp51sync.exceptions import RetriesExhaustedError
from gp51sync.models.metrics import SyncMetrics
from gp51sync.sync.scheduler import (
    PollingScheduler,
    SchedulerState,
    Transition,
    on_pass_failed,
    on_pass_succeeded,
)


class _ScriptedEngine:
    """Engine stand-in whose pass outcomes are scripted by the test."""

    def __init__(self, outcomes: list[bool] | None = None, *, default: bool = True) -> None:
        self.outcomes = list(outcomes or [])
        self.default = default
        self.is_syncing = False
        self.gate: asyncio.Event | None = None
        self.raise_error: Exception | None = None
        self.full_runs = 0
        self.stale_runs = 0

    async def run_full_sync(self) -> SyncMetrics:
        self.full_runs += 1
        if self.raise_error is not None:
            raise self.raise_error
        if self.gate is not None:
            self.is_syncing = True
            await self.gate.wait()
            self.is_syncing = False
        ok = self.outcomes.pop(0) if self.outcomes else self.default
        return SyncMetrics(
            last_sync_time=T0,
            succeeded=ok,
            errors=0 if ok else 1,
            error_message=None if ok else "provider down",
        )

    async def run_stale_sweep(self) -> SyncMetrics:
        self.stale_runs += 1
        return SyncMetrics(last_sync_time=T0, succeeded=True)


def _scheduler(engine: _ScriptedEngine, timer: ManualTimer, **kwargs: object) -> PollingScheduler:
    options: dict[str, object] = {"interval": 10.0, "stale_interval": 0, "timer": timer, "clock": lambda: T0}
    options.update(kwargs)
    return PollingScheduler(engine, **options)  # type: ignore[arg-type]


def test_failure_transitions_grow_exponentially() -> None:
    assert on_pass_failed(0, interval=30) == Transition(SchedulerState.BACKOFF, 1, 60.0)
    assert on_pass_failed(1, interval=30) == Transition(SchedulerState.BACKOFF, 2, 120.0)
    assert on_pass_failed(2, interval=30, multiplier=3.0) == Transition(SchedulerState.BACKOFF, 3, 810.0)


def test_failure_beyond_max_retries_disables() -> None:
    assert on_pass_failed(3, interval=30, max_retries=3) == Transition(SchedulerState.DISABLED, 4)
    assert on_pass_failed(0, interval=30, max_retries=0).state is SchedulerState.DISABLED


def test_success_resets_retry_count() -> None:
    assert on_pass_succeeded(3) == Transition(SchedulerState.RUNNING, 0)


@pytest.mark.asyncio
async def test_start_polls_immediately_then_every_interval(timer: ManualTimer) -> None:
    engine = _ScriptedEngine()
    scheduler = _scheduler(engine, timer)

    scheduler.start()
    assert scheduler.state is SchedulerState.RUNNING

    await timer.advance(0)
    assert engine.full_runs == 1

    await timer.advance(30)
    assert engine.full_runs == 4
    metrics = scheduler.get_metrics()
    assert metrics.total_polls == 4
    assert metrics.successful_polls == 4
    assert metrics.success_ratio == 100.0
    assert metrics.last_success_time == T0


@pytest.mark.asyncio
async def test_consecutive_failures_back_off_then_disable(timer: ManualTimer) -> None:
    engine = _ScriptedEngine(default=False)
    scheduler = _scheduler(engine, timer, max_retries=3, backoff_multiplier=2.0)

    scheduler.start()
    await timer.advance(0)

    delays: list[float] = []
    while scheduler.state is SchedulerState.BACKOFF:
        # The recurring timer is suspended while backing off.
        assert timer.pending_for("_on_tick") == []
        [retry] = timer.pending_for("_on_retry")
        delays.append(retry.delay)
        await timer.run_next()

    assert delays == [20.0, 40.0, 80.0]
    assert scheduler.state is SchedulerState.DISABLED
    assert engine.full_runs == 4
    assert timer.pending == []
    assert isinstance(scheduler.disabled_error, RetriesExhaustedError)
    metrics = scheduler.get_metrics()
    assert metrics.failed_polls == 4
    assert metrics.current_retry_count == 4
    assert metrics.last_error_time == T0


@pytest.mark.asyncio
async def test_success_after_backoff_resumes_interval(timer: ManualTimer) -> None:
    engine = _ScriptedEngine([False, True])
    scheduler = _scheduler(engine, timer)

    scheduler.start()
    await timer.advance(0)
    assert scheduler.state is SchedulerState.BACKOFF
    assert scheduler.retry_count == 1

    await timer.run_next()

    assert scheduler.state is SchedulerState.RUNNING
    assert scheduler.retry_count == 0
    assert [e.delay for e in timer.pending_for("_on_tick")] == [10.0]
    assert timer.pending_for("_on_retry") == []


@pytest.mark.asyncio
async def test_start_is_the_way_out_of_disabled(timer: ManualTimer) -> None:
    engine = _ScriptedEngine(default=False)
    scheduler = _scheduler(engine, timer, max_retries=0)

    scheduler.start()
    await timer.advance(0)
    assert scheduler.state is SchedulerState.DISABLED

    engine.default = True
    scheduler.start(interval=5.0)
    assert scheduler.disabled_error is None
    await timer.advance(0)

    assert scheduler.state is SchedulerState.RUNNING
    assert scheduler.interval == 5.0
    assert engine.full_runs == 2


@pytest.mark.asyncio
async def test_stop_cancels_timers_but_not_inflight_pass(timer: ManualTimer) -> None:
    engine = _ScriptedEngine()
    engine.gate = asyncio.Event()
    scheduler = _scheduler(engine, timer, stale_interval=60)

    scheduler.start()
    inflight = asyncio.create_task(timer.run_next())
    await asyncio.sleep(0)
    assert engine.is_syncing

    scheduler.stop()
    assert scheduler.state is SchedulerState.STOPPED
    assert timer.pending == []

    engine.gate.set()
    await inflight

    assert engine.full_runs == 1
    assert scheduler.get_metrics().total_polls == 1
    assert scheduler.state is SchedulerState.STOPPED
    assert timer.pending == []


@pytest.mark.asyncio
async def test_tick_while_engine_busy_is_skipped(timer: ManualTimer) -> None:
    engine = _ScriptedEngine()
    engine.is_syncing = True
    scheduler = _scheduler(engine, timer)

    scheduler.start()
    await timer.advance(0)

    assert engine.full_runs == 0
    assert scheduler.get_metrics().total_polls == 0
    assert len(timer.pending_for("_on_tick")) == 1


@pytest.mark.asyncio
async def test_stale_sweep_runs_on_its_own_interval(timer: ManualTimer) -> None:
    engine = _ScriptedEngine()
    scheduler = _scheduler(engine, timer, interval=10.0, stale_interval=100.0)

    scheduler.start()
    await timer.advance(100)

    assert engine.stale_runs == 1
    assert engine.full_runs == 11
    assert [e.delay for e in timer.pending_for("_on_stale_tick")] == [100.0]


@pytest.mark.asyncio
async def test_stale_timer_keeps_running_during_backoff(timer: ManualTimer) -> None:
    engine = _ScriptedEngine(default=False)
    scheduler = _scheduler(engine, timer, interval=10.0, stale_interval=15.0, max_retries=5)

    scheduler.start()
    await timer.advance(15)

    assert scheduler.state is SchedulerState.BACKOFF
    assert engine.stale_runs == 1


@pytest.mark.asyncio
async def test_poll_now_outside_running_state_only_counts(timer: ManualTimer) -> None:
    engine = _ScriptedEngine([False])
    scheduler = _scheduler(engine, timer)

    metrics = await scheduler.poll_now()

    assert metrics is not None and not metrics.succeeded
    assert scheduler.state is SchedulerState.STOPPED
    assert scheduler.get_metrics().failed_polls == 1
    assert timer.pending == []

    engine.is_syncing = True
    assert await scheduler.poll_now() is None


@pytest.mark.asyncio
async def test_unexpected_engine_error_counts_as_failure(timer: ManualTimer) -> None:
    engine = _ScriptedEngine()
    engine.raise_error = RuntimeError("bug")
    scheduler = _scheduler(engine, timer)

    scheduler.start()
    await timer.advance(0)

    assert scheduler.state is SchedulerState.BACKOFF
    assert scheduler.get_metrics().failed_polls == 1


def test_reset_clears_counters(timer: ManualTimer) -> None:
    scheduler = _scheduler(_ScriptedEngine(), timer)
    scheduler.reset()
    assert scheduler.get_metrics().total_polls == 0
    assert scheduler.get_metrics().success_ratio is None
    assert scheduler.retry_count == 0


def test_from_config(timer: ManualTimer) -> None:
    config = SyncConfig(poll_interval=45.0, stale_interval=900.0, max_retries=5)
    scheduler = PollingScheduler.from_config(config, _ScriptedEngine(), timer=timer)  # type: ignore[arg-type]
    assert scheduler.interval == 45.0
    assert scheduler.state is SchedulerState.STOPPED


def test_non_positive_interval_rejected(timer: ManualTimer) -> None:
    with pytest.raises(ValueError):
        _scheduler(_ScriptedEngine(), timer, interval=0)
