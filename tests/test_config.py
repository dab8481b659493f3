from __future__ import annotations

import pytest

from gp51sync.config import HealthThresholds, SyncConfig


def test_defaults() -> None:
    config = SyncConfig()
    assert config.poll_interval == 30.0
    assert config.stale_threshold == 24 * 3600
    assert config.max_retries == 3
    assert config.max_devices_per_request == 500
    assert config.thresholds == HealthThresholds()
    assert not config.has_credentials


def test_from_env_reads_gp51_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GP51_USERNAME", "fleet-admin")
    monkeypatch.setenv("GP51_PASSWORD", "secret")
    monkeypatch.setenv("GP51_POLL_INTERVAL", "45")
    monkeypatch.setenv("GP51_MAX_RETRIES", "5")
    monkeypatch.setenv("GP51_API_TRACE_ENABLED", "yes")

    config = SyncConfig.from_env()

    assert config.username == "fleet-admin"
    assert config.has_credentials
    assert config.poll_interval == 45.0
    assert config.max_retries == 5
    assert config.api_trace_enabled


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GP51_USERNAME", "from-env")
    monkeypatch.setenv("GP51_BATCH_SIZE", "10")
    monkeypatch.delenv("GP51_API_TRACE_ENABLED", raising=False)

    config = SyncConfig.from_env(username="explicit", batch_size=50)

    assert config.username == "explicit"
    assert config.batch_size == 50
    assert not config.api_trace_enabled
