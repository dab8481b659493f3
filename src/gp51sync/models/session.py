"""Session state for authenticated provider calls."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gp51sync._constants import BASE_URL


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Session(BaseModel):
    """Authenticated, time-bounded credential for calling the provider.

    Sessions are never mutated; a refresh replaces the whole object.

    Parameters
    ----------
    token : str
        Bearer token appended to authenticated requests.
    owner_identity : str
        Account the token was issued to.
    expires_at : datetime
        Instant after which the token must not be used (UTC).
    provider_base_url : str
        Provider the token belongs to.
    created_at : datetime
        When the session was obtained.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    token: str = Field(min_length=1)
    owner_identity: str
    expires_at: datetime
    provider_base_url: str = BASE_URL
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("expires_at", "created_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_expired(self, now: datetime) -> bool:
        """Whether *now* is at or past the recorded expiry."""
        return now >= self.expires_at

    def seconds_until_expiry(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()
