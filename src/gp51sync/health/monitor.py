"""Health monitoring for the sync pipeline.

The monitor never takes part in the write path. On every tick it reads what
the validator, engine and scheduler already expose, probes the datastore,
classifies each signal, and publishes a :class:`HealthSnapshot`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from gp51sync._timer import AsyncioTimer, Timer, TimerHandle
from gp51sync.config import HealthThresholds, SyncConfig
from gp51sync.datastore.base import Datastore
from gp51sync.exceptions import Gp51Error
from gp51sync.models.health import Alert, AlertKind, HealthSnapshot, HealthStatus, MetricStatus
from gp51sync.session.validator import SessionValidator
from gp51sync.sync.engine import PositionSyncEngine
from gp51sync.sync.scheduler import PollingScheduler, SchedulerState

_logger = logging.getLogger(__name__)

SESSION = "session"
SYNC_COMPLETION = "sync_completion"
SYNC_FRESHNESS = "sync_freshness"
POLL_SUCCESS = "poll_success"
DATASTORE = "datastore"

_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def aggregate_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Worst of *statuses*; ``healthy`` when empty."""
    worst = HealthStatus.HEALTHY
    for status in statuses:
        if _SEVERITY[status] > _SEVERITY[worst]:
            worst = status
    return worst


class HealthMonitor:
    """Aggregates component signals into one overall status.

    Parameters
    ----------
    validator, engine, scheduler, datastore
        The components whose state is reported.
    thresholds : HealthThresholds
        Classification limits.
    interval : float
        Seconds between ticks once started.
    max_alerts : int
        Retained alerts; the oldest is dropped first.
    dedupe_window : float
        An unresolved alert with the same metric and message raised within
        this many seconds suppresses a new one.
    """

    def __init__(
        self,
        validator: SessionValidator,
        engine: PositionSyncEngine,
        scheduler: PollingScheduler,
        datastore: Datastore,
        *,
        thresholds: HealthThresholds | None = None,
        interval: float = 30.0,
        timer: Timer | None = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        max_alerts: int = 50,
        dedupe_window: float = 300.0,
    ) -> None:
        self._validator = validator
        self._engine = engine
        self._scheduler = scheduler
        self._datastore = datastore
        self._thresholds = thresholds or HealthThresholds()
        self._interval = interval
        self._timer: Timer = timer or AsyncioTimer()
        self._clock = clock
        self._monotonic = monotonic
        self._dedupe_window = timedelta(seconds=dedupe_window)

        self._started_at = monotonic()
        self._handle: TimerHandle | None = None
        self._running = False
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._alert_ids = itertools.count(1)
        self._previous: dict[str, HealthStatus] = {}
        self._previous_overall = HealthStatus.HEALTHY
        self._snapshot = HealthSnapshot(generated_at=clock())
        self._subscribers: list[Callable[[HealthSnapshot], None]] = []

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        validator: SessionValidator,
        engine: PositionSyncEngine,
        scheduler: PollingScheduler,
        datastore: Datastore,
        *,
        timer: Timer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> HealthMonitor:
        return cls(
            validator,
            engine,
            scheduler,
            datastore,
            thresholds=config.thresholds,
            interval=config.health_interval,
            timer=timer,
            clock=clock,
        )

    @property
    def snapshot(self) -> HealthSnapshot:
        return self._snapshot

    @property
    def alerts(self) -> list[Alert]:
        """All retained alerts, oldest first."""
        return list(self._alerts)

    @property
    def open_alerts(self) -> list[Alert]:
        return [a for a in self._alerts if not a.resolved]

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[HealthSnapshot], None]) -> Callable[[], None]:
        """Register *callback*; it receives the current snapshot right away."""
        self._subscribers.append(callback)
        self._deliver(callback, self._snapshot)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _deliver(self, callback: Callable[[HealthSnapshot], None], snapshot: HealthSnapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            _logger.warning("Health subscriber failed", exc_info=True)

    def _publish(self, snapshot: HealthSnapshot) -> None:
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Check immediately, then every ``interval`` seconds."""
        self.stop()
        self._running = True
        self._started_at = self._monotonic()
        self._handle = self._timer.call_later(0, self._on_tick)
        _logger.info("Health monitoring started (interval=%ss)", self._interval)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._running = False

    async def _on_tick(self) -> None:
        self._handle = None
        if not self._running:
            return
        self._handle = self._timer.call_later(self._interval, self._on_tick)
        try:
            await self.check_now()
        except Exception:
            _logger.exception("Health check failed")

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_now(self) -> HealthSnapshot:
        """Run one check, publish and return the resulting snapshot."""
        now = self._clock()
        datastore_status, latency = await self._check_datastore()
        statuses = [
            self._check_session(now),
            self._check_completion(),
            self._check_freshness(now),
            self._check_polling(),
            datastore_status,
        ]
        overall = aggregate_status(s.status for s in statuses)

        for metric in statuses:
            self._track(metric, now)
        if overall is HealthStatus.CRITICAL and self._previous_overall is not HealthStatus.CRITICAL:
            reasons = "; ".join(m.message for m in statuses if m.status is HealthStatus.CRITICAL)
            self._raise(AlertKind.ERROR, "overall", f"GP51 platform critical: {reasons}", now)
        if overall is not self._previous_overall:
            _logger.info("GP51 health changed: %s -> %s", self._previous_overall.value, overall.value)
        self._previous_overall = overall

        self._snapshot = HealthSnapshot(
            overall=overall,
            metrics=statuses,
            open_alerts=self.open_alerts,
            uptime_seconds=round(self._monotonic() - self._started_at, 3),
            last_response_time_ms=round(latency * 1000, 1) if latency is not None else None,
            generated_at=now,
        )
        self._publish(self._snapshot)
        return self._snapshot

    def _check_session(self, now: datetime) -> MetricStatus:
        result = self._validator.last_result
        if result is None:
            return MetricStatus(
                name=SESSION,
                status=HealthStatus.WARNING,
                message="Session not validated yet",
                awaiting_data=True,
            )
        if not result.valid:
            return MetricStatus(
                name=SESSION,
                status=HealthStatus.CRITICAL,
                message=f"Session invalid: {result.error or 'unknown error'}",
            )
        if result.expires_at is None:
            return MetricStatus(name=SESSION, status=HealthStatus.HEALTHY, message="Session valid")

        remaining = (result.expires_at - now).total_seconds()
        if remaining <= 0:
            status, message = HealthStatus.CRITICAL, "Session expired"
        elif remaining < self._thresholds.session_expiry_warning:
            status, message = HealthStatus.WARNING, f"Session expires in {int(remaining // 60)} min"
        else:
            status, message = HealthStatus.HEALTHY, "Session valid"
        return MetricStatus(name=SESSION, status=status, value=round(remaining, 1), unit="s", message=message)

    def _check_completion(self) -> MetricStatus:
        metrics = self._engine.metrics
        if metrics.last_sync_time is None:
            return MetricStatus(name=SYNC_COMPLETION, status=HealthStatus.HEALTHY, message="No sync pass yet")
        if not metrics.succeeded:
            return MetricStatus(
                name=SYNC_COMPLETION,
                status=HealthStatus.CRITICAL,
                value=metrics.completion_rate,
                unit="%",
                message=f"Last sync failed: {metrics.error_message or 'unknown error'}",
            )

        rate = metrics.completion_rate
        if rate >= self._thresholds.completion_healthy:
            status = HealthStatus.HEALTHY
        elif rate >= self._thresholds.completion_warning:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.CRITICAL
        return MetricStatus(
            name=SYNC_COMPLETION,
            status=status,
            value=rate,
            unit="%",
            message=f"Sync completion {rate:.1f}% ({metrics.devices_updated}/{metrics.total_devices})",
        )

    def _check_freshness(self, now: datetime) -> MetricStatus:
        last = self._engine.last_success_time
        if last is None:
            return MetricStatus(
                name=SYNC_FRESHNESS,
                status=HealthStatus.WARNING,
                message="No successful sync yet",
                awaiting_data=True,
            )

        age = max(0.0, (now - last).total_seconds())
        if age <= self._thresholds.freshness_warning_age:
            status = HealthStatus.HEALTHY
        elif age <= self._thresholds.freshness_critical_age:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.CRITICAL
        return MetricStatus(
            name=SYNC_FRESHNESS,
            status=status,
            value=round(age, 1),
            unit="s",
            message=f"Last successful sync {int(age // 60)} min ago",
        )

    def _check_polling(self) -> MetricStatus:
        if self._scheduler.state is SchedulerState.DISABLED:
            reason = self._scheduler.disabled_error
            return MetricStatus(
                name=POLL_SUCCESS,
                status=HealthStatus.CRITICAL,
                message=str(reason) if reason else "Polling disabled after repeated failures",
            )

        ratio = self._scheduler.metrics.success_ratio
        if ratio is None:
            return MetricStatus(name=POLL_SUCCESS, status=HealthStatus.HEALTHY, message="No polls yet")
        if ratio >= self._thresholds.poll_success_healthy:
            status = HealthStatus.HEALTHY
        elif ratio >= self._thresholds.poll_success_warning:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.CRITICAL
        return MetricStatus(
            name=POLL_SUCCESS,
            status=status,
            value=round(ratio, 2),
            unit="%",
            message=f"Poll success rate {ratio:.1f}%",
        )

    async def _check_datastore(self) -> tuple[MetricStatus, float | None]:
        limit = self._thresholds.datastore_critical_latency
        started = self._monotonic()
        try:
            await asyncio.wait_for(self._datastore.ping(), timeout=limit * 2)
        except TimeoutError:
            return (
                MetricStatus(name=DATASTORE, status=HealthStatus.CRITICAL, message="Datastore probe timed out"),
                None,
            )
        except Gp51Error as exc:
            return (
                MetricStatus(name=DATASTORE, status=HealthStatus.CRITICAL, message=f"Datastore probe failed: {exc}"),
                None,
            )

        latency = self._monotonic() - started
        if latency < self._thresholds.datastore_warning_latency:
            status = HealthStatus.HEALTHY
        elif latency < limit:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.CRITICAL
        metric = MetricStatus(
            name=DATASTORE,
            status=status,
            value=round(latency * 1000, 1),
            unit="ms",
            message=f"Datastore round trip {latency * 1000:.0f} ms",
        )
        return metric, latency

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _track(self, metric: MetricStatus, now: datetime) -> None:
        if metric.awaiting_data:
            return
        previous = self._previous.get(metric.name, HealthStatus.HEALTHY)
        self._previous[metric.name] = metric.status
        if _SEVERITY[metric.status] > _SEVERITY[previous]:
            kind = AlertKind.ERROR if metric.status is HealthStatus.CRITICAL else AlertKind.WARNING
            self._raise(kind, metric.name, metric.message, now)
        elif metric.status is HealthStatus.HEALTHY and previous is not HealthStatus.HEALTHY:
            self._raise(AlertKind.INFO, metric.name, f"{metric.name} recovered: {metric.message}", now)

    def _raise(self, kind: AlertKind, metric: str, message: str, now: datetime) -> Alert | None:
        for alert in self._alerts:
            if (
                not alert.resolved
                and alert.metric == metric
                and alert.message == message
                and now - alert.timestamp < self._dedupe_window
            ):
                return None

        alert = Alert(
            id=f"alert-{next(self._alert_ids)}",
            kind=kind,
            metric=metric,
            message=message,
            timestamp=now,
        )
        self._alerts.append(alert)
        if kind is AlertKind.ERROR:
            _logger.error("Health alert: %s", message)
        elif kind is AlertKind.WARNING:
            _logger.warning("Health alert: %s", message)
        else:
            _logger.info("Health alert: %s", message)
        return alert

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark *alert_id* resolved; returns ``False`` if unknown or already resolved."""
        for index, alert in enumerate(self._alerts):
            if alert.id == alert_id:
                if alert.resolved:
                    return False
                self._alerts[index] = alert.model_copy(update={"resolved": True})
                self._snapshot = self._snapshot.model_copy(update={"open_alerts": self.open_alerts})
                return True
        return False
