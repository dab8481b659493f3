"""Helpers for safe debug logging.

GP51 requests carry the account password hash in the login body and the
session token in the query string. Request and response payloads logged
at DEBUG go through :func:`redact_for_log`; URLs go through
:func:`redact_url`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "<redacted>"

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "gp51_token",
        "accesstoken",
        "authorization",
        "cookie",
    }
)

_MAX_DEPTH = 20
_MAX_ITEMS = 20


def _is_secret(key: object) -> bool:
    return str(key).lower() in _SECRET_KEYS


def _shorten(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}…<truncated>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Copy of *value* with secrets masked and long strings or lists cut short.

    Device id lists in ``lastposition`` bodies can run to hundreds of
    entries; only the first ``20`` items of any sequence are kept.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _shorten(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    def _child(item: Any) -> Any:
        return redact_for_log(item, max_string=max_string, _depth=_depth + 1)

    if isinstance(value, Mapping):
        return {str(k): REDACTED if _is_secret(k) else _child(v) for k, v in value.items()}

    if isinstance(value, Sequence):
        items = [_child(v) for v in value[:_MAX_ITEMS]]
        if len(value) > _MAX_ITEMS:
            items.append(f"<+{len(value) - _MAX_ITEMS} more>")
        return items

    return repr(value)


def redact_url(url: str) -> str:
    """Mask secret query parameters, e.g. ``?action=x&token=abc`` -> ``token=<redacted>``."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, REDACTED if _is_secret(k) else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(parts._replace(query=urlencode(query, safe="<>")))
