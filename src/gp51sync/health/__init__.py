"""Health aggregation and alerting."""

from gp51sync.health.monitor import HealthMonitor, aggregate_status

__all__ = ["HealthMonitor", "aggregate_status"]
