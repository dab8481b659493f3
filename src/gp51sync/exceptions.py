"""Custom exception hierarchy for gp51sync."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure taxonomy shared by log events, metrics and alerts."""

    CONNECTIVITY = "connectivity"
    AUTHENTICATION = "authentication"
    API = "api"
    DATASTORE = "datastore"
    EXHAUSTED_RETRIES = "exhausted-retries"


class Gp51Error(Exception):
    """Base exception for all gp51sync errors."""


class Gp51ConfigError(Gp51Error):
    """Invalid or missing configuration."""


class Gp51TransportError(Gp51Error):
    """Provider unreachable (network failure, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        action: str = "",
    ) -> None:
        self.status_code = status_code
        self.action = action
        super().__init__(message)


class Gp51ApiError(Gp51Error):
    """Provider answered with a non-zero status or a malformed body."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        action: str = "",
    ) -> None:
        self.status = status
        self.action = action
        super().__init__(message)


class Gp51AuthenticationError(Gp51ApiError):
    """Login failed or no usable session could be obtained."""


class DatastoreError(Gp51Error):
    """A datastore query or update failed."""


class RetriesExhaustedError(Gp51Error):
    """The polling scheduler exceeded its retry ceiling and disabled itself."""


def error_kind_for(exc: BaseException) -> ErrorKind:
    """Map an exception onto the failure taxonomy."""
    if isinstance(exc, Gp51TransportError):
        return ErrorKind.CONNECTIVITY
    if isinstance(exc, Gp51AuthenticationError):
        return ErrorKind.AUTHENTICATION
    if isinstance(exc, DatastoreError):
        return ErrorKind.DATASTORE
    if isinstance(exc, RetriesExhaustedError):
        return ErrorKind.EXHAUSTED_RETRIES
    return ErrorKind.API
