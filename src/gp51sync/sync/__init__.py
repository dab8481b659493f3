"""Synchronization pipeline: batching, passes and scheduling."""

from gp51sync.sync.batch import BatchProcessor, BatchResult, chunked
from gp51sync.sync.engine import PositionSyncEngine, SyncStatus, classify_fix, completion_rate
from gp51sync.sync.scheduler import (
    PollingScheduler,
    SchedulerState,
    Transition,
    on_pass_failed,
    on_pass_succeeded,
)

__all__ = [
    "BatchProcessor",
    "BatchResult",
    "PollingScheduler",
    "PositionSyncEngine",
    "SchedulerState",
    "SyncStatus",
    "Transition",
    "chunked",
    "classify_fix",
    "completion_rate",
    "on_pass_failed",
    "on_pass_succeeded",
]
