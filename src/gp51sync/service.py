"""Composition root wiring every component of the sync core."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import asyncpg

from gp51sync._timer import Timer
from gp51sync.client import Gp51Client, TelemetryProvider
from gp51sync.config import SyncConfig
from gp51sync.datastore.base import Datastore
from gp51sync.datastore.memory import InMemoryDatastore
from gp51sync.datastore.postgres import PostgresDatastore, PostgresSessionStore, create_pool
from gp51sync.exceptions import Gp51ConfigError, Gp51Error
from gp51sync.health.monitor import HealthMonitor
from gp51sync.models.health import HealthSnapshot
from gp51sync.models.metrics import PollingMetrics, SyncMetrics, SyncProgress
from gp51sync.session.store import FileSessionStore, MemorySessionStore, SessionStore
from gp51sync.session.validator import SessionValidator
from gp51sync.sync.engine import PositionSyncEngine
from gp51sync.sync.scheduler import PollingScheduler

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FleetSyncService:
    """Builds and owns the session validator, sync engine, scheduler and health monitor.

    Components are created by :meth:`open` (or ``async with``) so that the
    HTTP session and database pool live exactly as long as the service.

    Usage::

        async with FleetSyncService(SyncConfig.from_env()) as service:
            await service.start()
            ...
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        provider: TelemetryProvider | None = None,
        datastore: Datastore | None = None,
        session_store: SessionStore | None = None,
        timer: Timer | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._provider = provider
        self._datastore = datastore
        self._session_store = session_store
        self._timer = timer
        self._clock = clock

        self._client: Gp51Client | None = None
        self._pool: asyncpg.Pool | None = None
        self._validator: SessionValidator | None = None
        self._engine: PositionSyncEngine | None = None
        self._scheduler: PollingScheduler | None = None
        self._monitor: HealthMonitor | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetSyncService:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the provider client, datastore and components."""
        if self._engine is not None:
            return

        config = self._config
        if (
            not config.has_credentials
            and self._session_store is None
            and not config.session_file
            and not config.database_url
        ):
            raise Gp51ConfigError(
                "GP51 credentials are required when no session store is configured "
                "(set GP51_USERNAME and GP51_PASSWORD)"
            )

        if self._provider is None:
            self._client = Gp51Client(config)
            await self._client.__aenter__()
            self._provider = self._client

        if config.database_url and (self._datastore is None or self._session_store is None):
            self._pool = await create_pool(config.database_url)

        if self._datastore is None:
            self._datastore = PostgresDatastore(self._pool) if self._pool is not None else InMemoryDatastore()

        if self._session_store is None:
            if config.session_file:
                self._session_store = FileSessionStore(config.session_file)
            elif self._pool is not None:
                self._session_store = PostgresSessionStore(self._pool)
            else:
                self._session_store = MemorySessionStore()

        self._validator = SessionValidator.from_config(config, self._session_store, self._provider, clock=self._clock)
        self._engine = PositionSyncEngine.from_config(
            config, self._validator, self._provider, self._datastore, clock=self._clock
        )
        self._scheduler = PollingScheduler.from_config(config, self._engine, timer=self._timer, clock=self._clock)
        self._monitor = HealthMonitor.from_config(
            config,
            self._validator,
            self._engine,
            self._scheduler,
            self._datastore,
            timer=self._timer,
            clock=self._clock,
        )
        _logger.debug(
            "Service components ready (datastore=%s, session_store=%s)",
            type(self._datastore).__name__,
            type(self._session_store).__name__,
        )

    async def close(self) -> None:
        """Stop timers and release the HTTP session and database pool."""
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._monitor is not None:
            self._monitor.stop()
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._provider = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _require(self, component: Any) -> Any:
        if component is None:
            raise Gp51Error("Service not opened. Use 'async with FleetSyncService(...) as service:'")
        return component

    @property
    def validator(self) -> SessionValidator:
        return self._require(self._validator)

    @property
    def engine(self) -> PositionSyncEngine:
        return self._require(self._engine)

    @property
    def scheduler(self) -> PollingScheduler:
        return self._require(self._scheduler)

    @property
    def monitor(self) -> HealthMonitor:
        return self._require(self._monitor)

    @property
    def datastore(self) -> Datastore:
        return self._require(self._datastore)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start polling and health monitoring.

        Reads the persisted polling configuration first: a disabled record
        leaves the scheduler stopped (the health monitor still runs), and
        its ``interval_seconds`` overrides the configured poll interval.

        Returns
        -------
        bool
            Whether polling was started.
        """
        interval = self._config.poll_interval
        enabled = True
        try:
            polling = await self.datastore.get_polling_config()
        except Gp51Error as exc:
            _logger.warning("Could not read polling configuration, using defaults: %s", exc)
            polling = None
        if polling is not None:
            enabled = polling.is_enabled
            if polling.interval_seconds > 0:
                interval = polling.interval_seconds

        if enabled:
            self.scheduler.start(interval)
        else:
            _logger.info("Polling disabled by configuration record")
        self.monitor.start()
        return enabled

    async def stop(self) -> None:
        self.scheduler.stop()
        self.monitor.stop()

    async def force_sync(self) -> SyncMetrics | None:
        """Run a full pass now; ``None`` if one is already running."""
        _logger.info("Forced sync requested")
        return await self.scheduler.poll_now()

    async def reset_and_restart(self) -> bool:
        """Drop the stored session and all counters, then start again."""
        _logger.info("Resetting sync service")
        self.scheduler.stop()
        self.monitor.stop()
        try:
            await self.validator.invalidate_session()
        except Gp51Error as exc:
            _logger.warning("Could not clear stored session: %s", exc)
            self.validator.clear_cache()
        self.scheduler.reset()
        return await self.start()

    def get_metrics(self) -> SyncMetrics:
        return self.engine.get_metrics()

    def get_polling_metrics(self) -> PollingMetrics:
        return self.scheduler.get_metrics()

    def get_sync_progress(self) -> SyncProgress:
        return self.engine.get_sync_progress()

    def get_health(self) -> HealthSnapshot:
        return self.monitor.snapshot

    def subscribe(self, callback: Callable[[HealthSnapshot], None]) -> Callable[[], None]:
        """Subscribe to health snapshots; see :meth:`HealthMonitor.subscribe`."""
        return self.monitor.subscribe(callback)
