"""gp51sync - Telemetry synchronization core for GP51 fleet tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gp51sync")
except PackageNotFoundError:
    __version__ = "0+local"
from gp51sync.client import Gp51Client, TelemetryProvider
from gp51sync.config import HealthThresholds, SyncConfig
from gp51sync.datastore import Datastore, InMemoryDatastore, PostgresDatastore, PostgresSessionStore
from gp51sync.exceptions import (
    DatastoreError,
    ErrorKind,
    Gp51ApiError,
    Gp51AuthenticationError,
    Gp51ConfigError,
    Gp51Error,
    Gp51TransportError,
    RetriesExhaustedError,
)
from gp51sync.health import HealthMonitor, aggregate_status
from gp51sync.models import (
    Alert,
    AlertKind,
    DeviceStatus,
    HealthSnapshot,
    HealthStatus,
    MetricStatus,
    PollingConfig,
    PollingMetrics,
    PositionFix,
    Session,
    SyncMetrics,
    SyncProgress,
    TrackedDevice,
)
from gp51sync.service import FleetSyncService
from gp51sync.session import FileSessionStore, MemorySessionStore, SessionStore, SessionValidator, ValidationResult
from gp51sync.sync import BatchProcessor, BatchResult, PollingScheduler, PositionSyncEngine, SchedulerState

__all__ = [
    "__version__",
    "Alert",
    "AlertKind",
    "BatchProcessor",
    "BatchResult",
    "Datastore",
    "DatastoreError",
    "DeviceStatus",
    "ErrorKind",
    "FileSessionStore",
    "FleetSyncService",
    "Gp51ApiError",
    "Gp51AuthenticationError",
    "Gp51Client",
    "Gp51ConfigError",
    "Gp51Error",
    "Gp51TransportError",
    "HealthMonitor",
    "HealthSnapshot",
    "HealthStatus",
    "HealthThresholds",
    "InMemoryDatastore",
    "MemorySessionStore",
    "MetricStatus",
    "PollingConfig",
    "PollingMetrics",
    "PollingScheduler",
    "PositionFix",
    "PositionSyncEngine",
    "PostgresDatastore",
    "PostgresSessionStore",
    "RetriesExhaustedError",
    "SchedulerState",
    "Session",
    "SessionStore",
    "SessionValidator",
    "SyncConfig",
    "SyncMetrics",
    "SyncProgress",
    "TrackedDevice",
    "ValidationResult",
    "aggregate_status",
]
