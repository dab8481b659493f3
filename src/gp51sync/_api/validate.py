"""Token validation action.

Action:
  - validatetoken
"""

from __future__ import annotations

from typing import Any

from gp51sync._api._common import is_success


def parse_validate_response(response: dict[str, Any]) -> bool:
    """A token is usable when the provider answers ``status == 0``.

    Some deployments add an explicit ``valid`` flag; when present it must
    be truthy as well.
    """
    if not is_success(response):
        return False
    valid = response.get("valid")
    return valid is None or bool(valid)
