"""Base model for GP51 records.

Every provider-facing model inherits from :class:`Gp51BaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from gp51sync._normalize import parse_provider_timestamp

# Sentinel strings the provider uses for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan"})

Gp51Timestamp = Annotated[datetime | None, BeforeValidator(parse_provider_timestamp)]
"""Annotated type that coerces epoch ints (seconds or ms) and ISO strings to UTC datetimes."""


class Gp51BaseModel(BaseModel):
    """Base for provider records.

    Handles:
    * sentinel values (``""``, ``"--"``, NaN) → dropped so the field
      default is used instead
    * stashes the original payload in ``raw``
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original provider record."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        original = dict(values)

        cleaned: dict[str, Any] = {}
        for key, value in original.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value

        # Keep an explicitly provided raw (kwargs construction); stash the
        # payload otherwise.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
