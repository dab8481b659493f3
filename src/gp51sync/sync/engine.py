"""One synchronization pass: session, device listing, fetch, classify, persist."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from gp51sync.client import TelemetryProvider
from gp51sync.config import SyncConfig
from gp51sync.datastore.base import Datastore
from gp51sync.exceptions import Gp51ApiError, Gp51AuthenticationError, Gp51Error
from gp51sync.models.metrics import SyncMetrics, SyncProgress
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice
from gp51sync.models.results import ApiFailure
from gp51sync.session.validator import SessionValidator
from gp51sync.sync.batch import BatchProcessor, chunked

_logger = logging.getLogger(__name__)

#: Completion rate (percent) below which a pass logs a warning.
COMPLETION_WARNING_RATE = 95.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncStatus(StrEnum):
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


def classify_fix(fix: PositionFix, now: datetime, freshness: timedelta) -> DeviceStatus:
    """Derive a device's status from its latest fix.

    A fix with no capture time, or one older than *freshness*, means the
    device is offline regardless of its last reported speed.
    """
    age = fix.age_seconds(now)
    if age is None or age > freshness.total_seconds():
        return DeviceStatus.OFFLINE
    if fix.speed_kph > 0:
        return DeviceStatus.MOVING
    return DeviceStatus.STOPPED


def completion_rate(updated: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return round(updated / total * 100, 2)


class PositionSyncEngine:
    """Orchestrates synchronization passes.

    At most one full pass and one stale sweep are in flight at a time; a
    trigger that arrives while one is running returns the previous metrics
    unchanged instead of queueing.
    """

    def __init__(
        self,
        validator: SessionValidator,
        provider: TelemetryProvider,
        datastore: Datastore,
        *,
        batch_processor: BatchProcessor[PositionFix] | None = None,
        batch_size: int = 100,
        max_devices_per_request: int = 500,
        freshness_threshold: float = 30 * 60,
        stale_threshold: float = 24 * 3600,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._validator = validator
        self._provider = provider
        self._datastore = datastore
        self._batch = batch_processor or BatchProcessor(chunk_size=batch_size, key=lambda fix: fix.device_id)
        self._batch_size = batch_size
        self._max_devices_per_request = max_devices_per_request
        self._freshness = timedelta(seconds=freshness_threshold)
        self._stale_threshold = timedelta(seconds=stale_threshold)
        self._clock = clock
        self._monotonic = monotonic

        self._syncing = False
        self._sweeping = False
        self._metrics = SyncMetrics()
        self._stale_metrics = SyncMetrics()
        self._last_success_time: datetime | None = None
        self._status_callbacks: list[Callable[[SyncStatus], None]] = []

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        validator: SessionValidator,
        provider: TelemetryProvider,
        datastore: Datastore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> PositionSyncEngine:
        return cls(
            validator,
            provider,
            datastore,
            batch_size=config.batch_size,
            max_devices_per_request=config.max_devices_per_request,
            freshness_threshold=config.freshness_threshold,
            stale_threshold=config.stale_threshold,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def is_sweeping(self) -> bool:
        return self._sweeping

    @property
    def metrics(self) -> SyncMetrics:
        """Metrics of the last full pass."""
        return self._metrics

    @property
    def stale_metrics(self) -> SyncMetrics:
        """Metrics of the last stale sweep."""
        return self._stale_metrics

    @property
    def last_success_time(self) -> datetime | None:
        """End of the last full pass that succeeded."""
        return self._last_success_time

    def get_metrics(self) -> SyncMetrics:
        return self._metrics

    def get_sync_progress(self) -> SyncProgress:
        metrics = self._metrics
        return SyncProgress(
            total_devices=metrics.total_devices,
            recently_updated=metrics.devices_updated,
            completion_percentage=metrics.completion_rate,
        )

    def subscribe_status(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Register *callback* for pass status transitions; returns an unsubscribe function."""
        self._status_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._status_callbacks:
                self._status_callbacks.remove(callback)

        return _unsubscribe

    def _notify(self, status: SyncStatus) -> None:
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception:
                _logger.debug("Sync status callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run_full_sync(self) -> SyncMetrics:
        """Synchronize every active device."""
        if self._syncing:
            _logger.info("Position sync already in progress, skipping")
            return self._metrics

        self._syncing = True
        self._notify(SyncStatus.SYNCING)
        try:
            metrics = await self._run_pass(self._datastore.list_active_devices, label="full sync")
            self._metrics = metrics
            if metrics.succeeded:
                self._last_success_time = metrics.last_sync_time
            await self._record_outcome(metrics)
        finally:
            self._syncing = False

        self._notify(SyncStatus.COMPLETED if metrics.succeeded else SyncStatus.ERROR)
        return metrics

    async def run_stale_sweep(self, stale_threshold: timedelta | None = None) -> SyncMetrics:
        """Synchronize only devices whose last fix is older than *stale_threshold*."""
        if self._sweeping:
            _logger.info("Stale sweep already in progress, skipping")
            return self._stale_metrics

        threshold = stale_threshold if stale_threshold is not None else self._stale_threshold
        cutoff = self._clock() - threshold

        async def _load() -> list[TrackedDevice]:
            return await self._datastore.list_stale_devices(cutoff)

        self._sweeping = True
        try:
            self._stale_metrics = await self._run_pass(_load, label="stale sweep")
        finally:
            self._sweeping = False
        return self._stale_metrics

    async def _run_pass(
        self,
        load_devices: Callable[[], Awaitable[list[TrackedDevice]]],
        *,
        label: str,
    ) -> SyncMetrics:
        started = self._monotonic()
        total = 0
        updated = 0
        errors = 0

        try:
            verdict = await self._validator.ensure_valid_session()
            if not verdict.valid or not verdict.token:
                raise Gp51AuthenticationError(verdict.error or "No valid GP51 session")

            devices = await load_devices()
            device_ids = list(dict.fromkeys(d.device_id for d in devices))
            total = len(device_ids)
            if not device_ids:
                _logger.info("%s: no devices to synchronize", label)
                return self._build_metrics(0, 0, 0, started, succeeded=True)

            _logger.info("%s: synchronizing %d devices", label, total)
            fixes = await self._fetch_positions(device_ids, verdict.token)

            wanted = set(device_ids)
            latest: dict[str, PositionFix] = {}
            for fix in fixes:
                if fix.device_id not in wanted:
                    continue
                current = latest.get(fix.device_id)
                if current is None or _newer(fix, current):
                    latest[fix.device_id] = fix

            missing = total - len(latest)
            if missing:
                _logger.debug("%s: %d devices returned no fix", label, missing)

            now = self._clock()

            async def _write(fix: PositionFix) -> None:
                await self._datastore.update_device_position(
                    fix.device_id,
                    fix,
                    classify_fix(fix, now, self._freshness),
                )

            batch = await self._batch.process(list(latest.values()), _write, self._batch_size)
            updated = batch.updated
            errors = missing + batch.errors
        except Gp51Error as exc:
            errors += 1
            _logger.error("%s failed: %s", label, exc)
            return self._build_metrics(total, updated, errors, started, succeeded=False, error_message=str(exc))
        except Exception as exc:
            errors += 1
            _logger.exception("%s failed unexpectedly", label)
            return self._build_metrics(
                total, updated, errors, started, succeeded=False, error_message=f"Unexpected error: {exc}"
            )

        metrics = self._build_metrics(total, updated, errors, started, succeeded=True)
        if metrics.completion_rate < COMPLETION_WARNING_RATE:
            _logger.warning(
                "%s completion rate %.1f%% below %.0f%% (%d/%d updated, %d errors)",
                label,
                metrics.completion_rate,
                COMPLETION_WARNING_RATE,
                updated,
                total,
                errors,
            )
        else:
            _logger.info("%s completed: %d/%d devices updated in %.2fs", label, updated, total, metrics.duration_seconds)
        return metrics

    async def _fetch_positions(self, device_ids: Sequence[str], token: str) -> list[PositionFix]:
        """Fetch fixes, splitting the request when it exceeds the per-request device limit."""
        fixes: list[PositionFix] = []
        for chunk in chunked(device_ids, self._max_devices_per_request):
            result = await self._provider.fetch_positions(chunk, token)
            if isinstance(result, ApiFailure):
                # The token may have been revoked; make the next caller re-probe it.
                self._validator.force_revalidation()
                raise Gp51ApiError(
                    f"Position fetch failed: {result.cause}",
                    status=result.status,
                    action=result.action,
                )
            fixes.extend(result.records)
        return fixes

    def _build_metrics(
        self,
        total: int,
        updated: int,
        errors: int,
        started: float,
        *,
        succeeded: bool,
        error_message: str | None = None,
    ) -> SyncMetrics:
        return SyncMetrics(
            total_devices=total,
            devices_updated=updated,
            errors=errors,
            completion_rate=completion_rate(updated, total),
            last_sync_time=self._clock(),
            succeeded=succeeded,
            error_message=error_message,
            duration_seconds=round(self._monotonic() - started, 3),
        )

    async def _record_outcome(self, metrics: SyncMetrics) -> None:
        last_poll_time = metrics.last_sync_time or self._clock()
        try:
            await self._datastore.update_polling_status(last_poll_time, metrics.succeeded, metrics.error_message)
        except Gp51Error as exc:
            _logger.warning("Failed to record sync status: %s", exc)


def _newer(candidate: PositionFix, current: PositionFix) -> bool:
    if candidate.captured_at is None:
        return False
    if current.captured_at is None:
        return True
    return candidate.captured_at > current.captured_at
