"""Tagged results returned at the provider-client boundary.

Application-level outcomes are values, not exceptions: callers branch on
``isinstance(result, ApiFailure)`` instead of probing response fields.
Transport failures still raise :class:`~gp51sync.exceptions.Gp51TransportError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias

from gp51sync.models.position import PositionFix


@dataclass(frozen=True, slots=True)
class ApiFailure:
    """The provider answered with a non-zero ``status``."""

    cause: str
    status: int | None = None
    action: str = ""


@dataclass(frozen=True, slots=True)
class AuthOk:
    token: str
    username: str


@dataclass(frozen=True, slots=True)
class PositionsOk:
    records: list[PositionFix] = field(default_factory=list)
    skipped: int = 0


AuthResult: TypeAlias = AuthOk | ApiFailure
PositionsResult: TypeAlias = PositionsOk | ApiFailure
