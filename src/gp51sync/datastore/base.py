"""Read/write contract the sync core needs from the relational datastore."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from gp51sync.models.metrics import PollingConfig
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice


class Datastore(Protocol):
    """Structural datastore interface.

    Implementations raise :class:`~gp51sync.exceptions.DatastoreError` on
    query or update failure.
    """

    async def list_active_devices(self) -> list[TrackedDevice]:
        """Every device with ``is_active = true``; never paginated or capped."""
        ...

    async def list_stale_devices(self, older_than: datetime) -> list[TrackedDevice]:
        """Active devices whose last fix predates *older_than* (or that have none)."""
        ...

    async def update_device_position(self, device_id: str, fix: PositionFix, status: DeviceStatus) -> None:
        ...

    async def update_polling_status(
        self,
        last_poll_time: datetime,
        success: bool,
        error_message: str | None,
    ) -> None:
        ...

    async def get_polling_config(self) -> PollingConfig | None:
        ...

    async def ping(self) -> None:
        """Cheapest possible round trip; used for latency probing."""
        ...
