"""Polling scheduler: drives the sync engine on a timer with backoff.

The scheduler is an explicit state machine::

    stopped -> running -> backoff -> running -> ... -> disabled

The transition rules live in two pure functions,
:func:`on_pass_succeeded` and :func:`on_pass_failed`, so they can be tested
without timers. :class:`PollingScheduler` applies them and owns the timer
handles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from gp51sync._timer import AsyncioTimer, Timer, TimerHandle
from gp51sync.config import SyncConfig
from gp51sync.exceptions import RetriesExhaustedError, error_kind_for
from gp51sync.models.metrics import PollingMetrics, SyncMetrics
from gp51sync.sync.engine import PositionSyncEngine

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SchedulerState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"
    BACKOFF = "backoff"
    DISABLED = "disabled"


@dataclass(frozen=True, slots=True)
class Transition:
    """Result of applying one pass outcome to the scheduler state."""

    state: SchedulerState
    retry_count: int
    retry_delay: float | None = None


def on_pass_succeeded(retry_count: int) -> Transition:
    """Any success resets the retry counter and resumes the recurring timer."""
    return Transition(state=SchedulerState.RUNNING, retry_count=0)


def on_pass_failed(
    retry_count: int,
    *,
    interval: float,
    multiplier: float = 2.0,
    max_retries: int = 3,
) -> Transition:
    """Compute the state after a failed pass.

    Parameters
    ----------
    retry_count : int
        Consecutive failures before this one.
    interval : float
        Base polling interval in seconds.
    multiplier : float
        Backoff multiplier.
    max_retries : int
        Number of retries allowed before the scheduler disables itself.

    Returns
    -------
    Transition
        ``backoff`` with a retry after ``interval * multiplier ** k`` (``k``
        being the new failure count), or ``disabled`` once ``k`` exceeds
        *max_retries*.
    """
    count = retry_count + 1
    if count > max_retries:
        return Transition(state=SchedulerState.DISABLED, retry_count=count)
    return Transition(
        state=SchedulerState.BACKOFF,
        retry_count=count,
        retry_delay=interval * multiplier**count,
    )


class PollingScheduler:
    """Runs full passes every ``interval`` seconds and stale sweeps every ``stale_interval``.

    ``stop()`` cancels pending timers only; a pass that is already running
    finishes normally.
    """

    def __init__(
        self,
        engine: PositionSyncEngine,
        *,
        interval: float = 30.0,
        stale_interval: float = 3600.0,
        backoff_multiplier: float = 2.0,
        max_retries: int = 3,
        timer: Timer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._engine = engine
        self._interval = interval
        self._stale_interval = stale_interval
        self._multiplier = backoff_multiplier
        self._max_retries = max_retries
        self._timer: Timer = timer or AsyncioTimer()
        self._clock = clock

        self._state = SchedulerState.STOPPED
        self._retry_count = 0
        self._metrics = PollingMetrics()
        self._generation = 0
        self._main_handle: TimerHandle | None = None
        self._retry_handle: TimerHandle | None = None
        self._stale_handle: TimerHandle | None = None
        self._disabled_error: RetriesExhaustedError | None = None

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        engine: PositionSyncEngine,
        *,
        timer: Timer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> PollingScheduler:
        return cls(
            engine,
            interval=config.poll_interval,
            stale_interval=config.stale_interval,
            backoff_multiplier=config.backoff_multiplier,
            max_retries=config.max_retries,
            timer=timer,
            clock=clock,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def disabled_error(self) -> RetriesExhaustedError | None:
        """Why the scheduler disabled itself; cleared by :meth:`start`."""
        return self._disabled_error

    @property
    def metrics(self) -> PollingMetrics:
        return self._metrics

    def get_metrics(self) -> PollingMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, interval: float | None = None) -> None:
        """(Re)start polling: one pass right away, then every *interval* seconds.

        Also the only way out of ``disabled``.
        """
        if interval is not None:
            if interval <= 0:
                raise ValueError("interval must be positive")
            self._interval = interval
        self._cancel_timers()
        self._generation += 1
        self._retry_count = 0
        self._disabled_error = None
        self._metrics = self._metrics.model_copy(update={"current_retry_count": 0})
        self._state = SchedulerState.RUNNING
        self._main_handle = self._timer.call_later(0, self._on_tick)
        if self._stale_interval > 0:
            self._stale_handle = self._timer.call_later(self._stale_interval, self._on_stale_tick)
        _logger.info("Polling started (interval=%ss, stale_interval=%ss)", self._interval, self._stale_interval)

    def stop(self) -> None:
        """Cancel all timers; an in-flight pass is left to finish."""
        self._cancel_timers()
        self._generation += 1
        if self._state is not SchedulerState.STOPPED:
            _logger.info("Polling stopped")
        self._state = SchedulerState.STOPPED

    def reset(self) -> None:
        """Zero the retry counter and the poll counters."""
        self._retry_count = 0
        self._metrics = PollingMetrics()

    async def poll_now(self) -> SyncMetrics | None:
        """Run a full pass immediately, outside the timer cadence.

        Returns ``None`` when a pass is already running.
        """
        generation = self._generation
        metrics = await self._execute()
        if metrics is not None and generation == self._generation:
            if self._state in (SchedulerState.RUNNING, SchedulerState.BACKOFF):
                self._apply(metrics)
        return metrics

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    async def _on_tick(self) -> None:
        self._main_handle = None
        if self._state is not SchedulerState.RUNNING:
            return
        generation = self._generation
        self._main_handle = self._timer.call_later(self._interval, self._on_tick)
        metrics = await self._execute()
        if metrics is not None and generation == self._generation:
            self._apply(metrics)

    async def _on_retry(self) -> None:
        self._retry_handle = None
        if self._state is not SchedulerState.BACKOFF:
            return
        generation = self._generation
        metrics = await self._execute()
        if metrics is None:
            # Busy: try again at the same backoff step.
            if generation == self._generation and self._state is SchedulerState.BACKOFF:
                delay = self._interval * self._multiplier**self._retry_count
                self._retry_handle = self._timer.call_later(delay, self._on_retry)
            return
        if generation == self._generation:
            self._apply(metrics)

    async def _on_stale_tick(self) -> None:
        self._stale_handle = None
        if self._state not in (SchedulerState.RUNNING, SchedulerState.BACKOFF):
            return
        self._stale_handle = self._timer.call_later(self._stale_interval, self._on_stale_tick)
        try:
            await self._engine.run_stale_sweep()
        except Exception:
            _logger.exception("Stale sweep raised unexpectedly")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(self) -> SyncMetrics | None:
        if self._engine.is_syncing:
            _logger.debug("Sync pass still running, skipping tick")
            return None

        started = self._clock()
        try:
            metrics = await self._engine.run_full_sync()
        except Exception as exc:
            _logger.exception("Sync pass raised unexpectedly")
            metrics = SyncMetrics(last_sync_time=self._clock(), succeeded=False, error_message=str(exc), errors=1)

        finished = metrics.last_sync_time or self._clock()
        update: dict[str, object] = {
            "total_polls": self._metrics.total_polls + 1,
            "last_poll_time": started,
        }
        if metrics.succeeded:
            update["successful_polls"] = self._metrics.successful_polls + 1
            update["last_success_time"] = finished
        else:
            update["failed_polls"] = self._metrics.failed_polls + 1
            update["last_error_time"] = finished
        self._metrics = self._metrics.model_copy(update=update)
        return metrics

    def _apply(self, metrics: SyncMetrics) -> None:
        if metrics.succeeded:
            transition = on_pass_succeeded(self._retry_count)
        else:
            transition = on_pass_failed(
                self._retry_count,
                interval=self._interval,
                multiplier=self._multiplier,
                max_retries=self._max_retries,
            )

        previous = self._state
        self._retry_count = transition.retry_count
        self._state = transition.state
        self._metrics = self._metrics.model_copy(update={"current_retry_count": self._retry_count})

        if transition.state is SchedulerState.RUNNING:
            if previous is SchedulerState.BACKOFF:
                _logger.info("Sync recovered, resuming polling every %ss", self._interval)
                self._cancel(self._retry_handle)
                self._retry_handle = None
                self._main_handle = self._timer.call_later(self._interval, self._on_tick)
            return

        # Failure: the recurring timer stays suspended until a pass succeeds.
        self._cancel(self._main_handle)
        self._main_handle = None
        self._cancel(self._retry_handle)
        self._retry_handle = None

        if transition.state is SchedulerState.DISABLED:
            self._cancel_timers()
            self._disabled_error = RetriesExhaustedError(
                f"Polling disabled after {self._retry_count} consecutive failures: {metrics.error_message}"
            )
            _logger.error(
                "%s",
                self._disabled_error,
                extra={"error_kind": error_kind_for(self._disabled_error).value},
            )
            return

        delay = transition.retry_delay or self._interval
        _logger.warning(
            "Sync pass failed (%d/%d), retrying in %ss: %s",
            self._retry_count,
            self._max_retries,
            delay,
            metrics.error_message,
        )
        self._retry_handle = self._timer.call_later(delay, self._on_retry)

    @staticmethod
    def _cancel(handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancel()

    def _cancel_timers(self) -> None:
        for handle in (self._main_handle, self._retry_handle, self._stale_handle):
            self._cancel(handle)
        self._main_handle = None
        self._retry_handle = None
        self._stale_handle = None
