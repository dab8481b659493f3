"""In-memory datastore.

Reference implementation of :class:`~gp51sync.datastore.base.Datastore`
for tests and local runs without a database.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from gp51sync.exceptions import DatastoreError
from gp51sync.models.metrics import PollingConfig
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryDatastore:
    """Dict-backed datastore.

    ``update_polling_status`` mirrors the database function of the same
    name: ``error_count`` grows on failure and resets on success.
    """

    def __init__(
        self,
        devices: Iterable[TrackedDevice] = (),
        *,
        polling_config: PollingConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._devices: dict[str, TrackedDevice] = {d.device_id: d for d in devices}
        self._polling_config = polling_config if polling_config is not None else PollingConfig()
        self.status_history: list[tuple[datetime, bool, str | None]] = []

    def add_device(self, device: TrackedDevice) -> None:
        self._devices[device.device_id] = device

    def get_device(self, device_id: str) -> TrackedDevice | None:
        return self._devices.get(device_id)

    async def list_active_devices(self) -> list[TrackedDevice]:
        return [d for d in self._devices.values() if d.active]

    async def list_stale_devices(self, older_than: datetime) -> list[TrackedDevice]:
        return [
            d
            for d in self._devices.values()
            if d.active and (d.last_fix_time is None or d.last_fix_time < older_than)
        ]

    async def update_device_position(self, device_id: str, fix: PositionFix, status: DeviceStatus) -> None:
        device = self._devices.get(device_id)
        if device is None:
            raise DatastoreError(f"Unknown device {device_id}")
        self._devices[device_id] = device.model_copy(
            update={"last_position": fix, "status": status, "updated_at": self._clock()}
        )

    async def update_polling_status(
        self,
        last_poll_time: datetime,
        success: bool,
        error_message: str | None,
    ) -> None:
        self.status_history.append((last_poll_time, success, error_message))
        current = self._polling_config
        if success:
            self._polling_config = current.model_copy(
                update={
                    "last_poll_time": last_poll_time,
                    "last_successful_poll": last_poll_time,
                    "error_count": 0,
                    "last_error": None,
                }
            )
        else:
            self._polling_config = current.model_copy(
                update={
                    "last_poll_time": last_poll_time,
                    "error_count": current.error_count + 1,
                    "last_error": error_message,
                }
            )

    async def get_polling_config(self) -> PollingConfig | None:
        return self._polling_config

    async def ping(self) -> None:
        return None
