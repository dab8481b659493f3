"""Device and position models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from gp51sync._normalize import safe_float, safe_str
from gp51sync.models._base import Gp51BaseModel, Gp51Timestamp


class DeviceStatus(StrEnum):
    """Derived device status; never stored on the provider side."""

    MOVING = "moving"
    STOPPED = "stopped"
    OFFLINE = "offline"


class PositionFix(Gp51BaseModel):
    """One timestamped position reading for a device.

    Parameters
    ----------
    device_id : str
        Provider device identifier.
    lat : float or None
        Latitude in degrees.
    lon : float or None
        Longitude in degrees.
    speed_kph : float
        Ground speed in km/h; ``0`` when the provider omits it.
    heading_deg : float or None
        Course over ground in degrees.
    captured_at : datetime or None
        When the device recorded the fix (UTC).
    status_text : str or None
        Provider's human-readable status string.
    """

    device_id: str = Field(validation_alias=AliasChoices("deviceid", "deviceId", "device_id"))
    lat: float | None = Field(default=None, validation_alias=AliasChoices("callat", "lat", "latitude"))
    lon: float | None = Field(default=None, validation_alias=AliasChoices("callon", "lon", "lng", "longitude"))
    speed_kph: float = Field(default=0.0, validation_alias=AliasChoices("speed", "speed_kph"))
    heading_deg: float | None = Field(
        default=None,
        validation_alias=AliasChoices("course", "heading", "direction", "heading_deg"),
    )
    captured_at: Gp51Timestamp = Field(
        default=None,
        validation_alias=AliasChoices("updatetime", "captured_at", "gpstime"),
    )
    status_text: str | None = Field(
        default=None,
        validation_alias=AliasChoices("strstatusen", "strstatus", "statusText", "status_text"),
    )

    @field_validator("device_id", mode="before")
    @classmethod
    def _coerce_device_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("device_id must be non-empty")
        return text

    @field_validator("lat", "lon", "heading_deg", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("speed_kph", mode="before")
    @classmethod
    def _coerce_speed(cls, value: Any) -> float:
        parsed = safe_float(value)
        return parsed if parsed is not None and parsed > 0 else 0.0

    def age_seconds(self, now: datetime) -> float | None:
        """Seconds between capture and *now*; ``None`` when the capture time is unknown."""
        if self.captured_at is None:
            return None
        return (now - self.captured_at).total_seconds()

    def to_record(self) -> dict[str, Any]:
        """Serializable ``last_position`` payload stored with the device."""
        return {
            "lat": self.lat,
            "lon": self.lon,
            "speed": self.speed_kph,
            "course": self.heading_deg,
            "updatetime": self.captured_at.isoformat() if self.captured_at else None,
            "statusText": self.status_text,
        }


class TrackedDevice(BaseModel):
    """A device the datastore tracks; read-only for the sync core except its position."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    display_name: str = ""
    active: bool = True
    owner_id: str | None = None
    last_position: PositionFix | None = None
    status: DeviceStatus | None = None
    updated_at: datetime | None = None

    @property
    def last_fix_time(self) -> datetime | None:
        if self.last_position is None:
            return None
        return self.last_position.captured_at
