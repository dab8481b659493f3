"""Shared helpers for provider action modules.

It is internal to gp51sync and may change at any time.
"""

from __future__ import annotations

from typing import Any

from gp51sync._constants import STATUS_OK
from gp51sync._normalize import safe_int, safe_str
from gp51sync.models.results import ApiFailure


def response_status(response: dict[str, Any]) -> int | None:
    """Return the integer ``status`` of a response, ``None`` when absent or garbled."""
    return safe_int(response.get("status"))


def is_success(response: dict[str, Any]) -> bool:
    return response_status(response) == STATUS_OK


def failure_from(response: dict[str, Any], action: str) -> ApiFailure:
    """Build an :class:`ApiFailure` from a non-success response."""
    status = response_status(response)
    cause = safe_str(response.get("cause")) or f"{action} failed with status {response.get('status')!r}"
    return ApiFailure(cause=cause, status=status, action=action)
