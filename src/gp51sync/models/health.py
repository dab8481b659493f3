"""Health reporting models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class MetricStatus(BaseModel):
    """Classification of a single health signal."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: HealthStatus
    value: float | None = None
    unit: str = ""
    message: str = ""
    awaiting_data: bool = False
    """No data to judge yet; reported but never alerted on."""


class Alert(BaseModel):
    """An alert raised by the health monitor; stays open until resolved."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: AlertKind
    metric: str
    message: str
    timestamp: datetime
    resolved: bool = False


class HealthSnapshot(BaseModel):
    """Aggregated health, rebuilt on every monitoring tick."""

    model_config = ConfigDict(frozen=True)

    overall: HealthStatus = HealthStatus.HEALTHY
    metrics: list[MetricStatus] = Field(default_factory=list)
    open_alerts: list[Alert] = Field(default_factory=list)
    uptime_seconds: float = 0.0
    last_response_time_ms: float | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def metric(self, name: str) -> MetricStatus | None:
        for entry in self.metrics:
            if entry.name == name:
                return entry
        return None
