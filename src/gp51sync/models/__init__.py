"""Typed records used across gp51sync."""

from gp51sync.models.health import Alert, AlertKind, HealthSnapshot, HealthStatus, MetricStatus
from gp51sync.models.metrics import PollingConfig, PollingMetrics, SyncMetrics, SyncProgress
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice
from gp51sync.models.session import Session

__all__ = [
    "Alert",
    "AlertKind",
    "DeviceStatus",
    "HealthSnapshot",
    "HealthStatus",
    "MetricStatus",
    "PollingConfig",
    "PollingMetrics",
    "PositionFix",
    "Session",
    "SyncMetrics",
    "SyncProgress",
    "TrackedDevice",
]
