"""Observability models exposed by the sync engine and scheduler."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class SyncMetrics(BaseModel):
    """Outcome of one synchronization pass; recomputed every pass, never persisted."""

    model_config = ConfigDict(frozen=True)

    total_devices: int = 0
    devices_updated: int = 0
    errors: int = 0
    completion_rate: float = 0.0
    last_sync_time: datetime | None = None
    succeeded: bool = False
    error_message: str | None = None
    duration_seconds: float = 0.0


class SyncProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_devices: int
    recently_updated: int
    completion_percentage: float


class PollingMetrics(BaseModel):
    """Counters kept by the polling scheduler."""

    model_config = ConfigDict(frozen=True)

    total_polls: int = 0
    successful_polls: int = 0
    failed_polls: int = 0
    last_poll_time: datetime | None = None
    last_success_time: datetime | None = None
    last_error_time: datetime | None = None
    current_retry_count: int = 0

    @property
    def success_ratio(self) -> float | None:
        """Successful polls in percent; ``None`` before the first poll."""
        if self.total_polls == 0:
            return None
        return self.successful_polls / self.total_polls * 100


class PollingConfig(BaseModel):
    """Persisted polling configuration record."""

    model_config = ConfigDict(frozen=True)

    interval_seconds: float = 30.0
    is_enabled: bool = True
    error_count: int = 0
    last_poll_time: datetime | None = None
    last_successful_poll: datetime | None = None
    last_error: str | None = None
