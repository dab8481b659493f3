"""Last-position action.

Action:
  - lastposition
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from gp51sync._api._common import failure_from, is_success
from gp51sync._constants import ACTION_LAST_POSITION
from gp51sync.models.position import PositionFix
from gp51sync.models.results import ApiFailure, PositionsOk, PositionsResult

_logger = logging.getLogger(__name__)


def build_last_position_params(
    device_ids: Sequence[str],
    last_query_time: datetime | None = None,
) -> dict[str, Any]:
    """Build the JSON body for ``lastposition``.

    ``lastquerypositiontime`` is sent as epoch milliseconds; an empty string
    asks the provider for every device's latest fix regardless of age.
    """
    return {
        "deviceids": list(device_ids),
        "lastquerypositiontime": int(last_query_time.timestamp() * 1000) if last_query_time else "",
    }


def parse_last_position_response(response: dict[str, Any]) -> PositionsResult:
    """Parse a ``lastposition`` response into a tagged result.

    Records that do not validate (e.g. missing ``deviceid``) are skipped and
    counted in :attr:`PositionsOk.skipped`.
    """
    if not is_success(response):
        return failure_from(response, ACTION_LAST_POSITION)

    raw_records = response.get("records")
    if raw_records is None:
        return PositionsOk(records=[])
    if not isinstance(raw_records, list):
        return ApiFailure(
            cause=f"Malformed records field: {type(raw_records).__name__}",
            status=0,
            action=ACTION_LAST_POSITION,
        )

    records: list[PositionFix] = []
    skipped = 0
    for raw in raw_records:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        try:
            records.append(PositionFix.model_validate(raw))
        except ValidationError:
            _logger.debug("Skipping unparseable position record", exc_info=True)
            skipped += 1
    return PositionsOk(records=records, skipped=skipped)
