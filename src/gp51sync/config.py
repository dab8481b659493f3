"""Service configuration for gp51sync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from gp51sync._constants import BASE_URL


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class HealthThresholds:
    """Fixed thresholds mapping raw signals onto healthy/warning/critical.

    Latencies and ages are in seconds, rates and ratios in percent.
    """

    datastore_warning_latency: float = 1.0
    datastore_critical_latency: float = 3.0
    poll_success_healthy: float = 90.0
    poll_success_warning: float = 70.0
    completion_healthy: float = 95.0
    completion_warning: float = 80.0
    freshness_warning_age: float = 10 * 60
    freshness_critical_age: float = 30 * 60
    session_expiry_warning: float = 3600.0


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Service configuration.

    Parameters
    ----------
    username : str
        GP51 account name used when a fresh session must be obtained.
    password : str
        GP51 account password (plaintext; hashed before it leaves the process).
    base_url : str
        Provider base URL.
    request_timeout : float
        Per-request HTTP timeout in seconds.
    session_ttl : float
        Lifetime assigned to a freshly authenticated session, in seconds.
        The provider does not report an expiry; 24 hours matches observed
        token lifetimes.
    session_file : str or None
        JSON file backing the session store. ``None`` keeps sessions in the
        datastore instead.
    database_url : str or None
        asyncpg DSN. ``None`` selects the in-memory datastore.
    poll_interval : float
        Seconds between full synchronization passes.
    stale_interval : float
        Seconds between stale-record sweeps.
    stale_threshold : float
        Age in seconds after which a device's last fix counts as stale.
    freshness_threshold : float
        Age in seconds after which a fix classifies its device as offline.
    backoff_multiplier : float
        Growth factor of the retry delay after consecutive failures.
    max_retries : int
        Consecutive failures tolerated before the scheduler disables itself.
    batch_size : int
        Records per persistence chunk.
    max_devices_per_request : int
        Device IDs per outbound ``lastposition`` call.
    health_interval : float
        Seconds between health monitor ticks.
    validation_cache_ttl : float
        Lifetime of a valid session verdict.
    invalid_cache_ttl : float
        Lifetime of an invalid session verdict.
    validation_wait_timeout : float
        Upper bound a caller waits for another caller's in-flight validation.
    connectivity_attempts : int
        Probe attempts per stored session candidate.
    connectivity_retry_delay : float
        Fixed delay between probe attempts.
    thresholds : HealthThresholds
        Health classification thresholds.
    """

    username: str = ""
    password: str = ""
    base_url: str = BASE_URL
    request_timeout: float = 30.0
    session_ttl: float = 24 * 3600
    session_file: str | None = None
    database_url: str | None = None
    poll_interval: float = 30.0
    stale_interval: float = 3600.0
    stale_threshold: float = 24 * 3600
    freshness_threshold: float = 30 * 60
    backoff_multiplier: float = 2.0
    max_retries: int = 3
    batch_size: int = 100
    max_devices_per_request: int = 500
    health_interval: float = 30.0
    validation_cache_ttl: float = 30.0
    invalid_cache_ttl: float = 5.0
    validation_wait_timeout: float = 5.0
    connectivity_attempts: int = 3
    connectivity_retry_delay: float = 1.0
    api_trace_enabled: bool = False
    thresholds: HealthThresholds = dataclasses.field(default_factory=HealthThresholds)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``GP51_USERNAME``, ``GP51_PASSWORD`` and the optional
        ``GP51_*`` variables below. Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "GP51_USERNAME": "username",
            "GP51_PASSWORD": "password",
            "GP51_BASE_URL": "base_url",
            "GP51_SESSION_FILE": "session_file",
            "GP51_DATABASE_URL": "database_url",
        }
        _ENV_FLOAT_MAP = {
            "GP51_REQUEST_TIMEOUT": "request_timeout",
            "GP51_SESSION_TTL": "session_ttl",
            "GP51_POLL_INTERVAL": "poll_interval",
            "GP51_STALE_INTERVAL": "stale_interval",
            "GP51_STALE_THRESHOLD": "stale_threshold",
            "GP51_FRESHNESS_THRESHOLD": "freshness_threshold",
            "GP51_BACKOFF_MULTIPLIER": "backoff_multiplier",
            "GP51_HEALTH_INTERVAL": "health_interval",
        }
        _ENV_INT_MAP = {
            "GP51_MAX_RETRIES": "max_retries",
            "GP51_BATCH_SIZE": "batch_size",
            "GP51_MAX_DEVICES_PER_REQUEST": "max_devices_per_request",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(env.get("GP51_API_TRACE_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
