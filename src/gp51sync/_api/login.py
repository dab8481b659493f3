"""Login action.

Action:
  - login
"""

from __future__ import annotations

import logging
from typing import Any

from gp51sync._api._common import failure_from, is_success
from gp51sync._constants import ACTION_LOGIN
from gp51sync._normalize import safe_str
from gp51sync._redact import redact_for_log
from gp51sync.models.results import ApiFailure, AuthOk, AuthResult

_logger = logging.getLogger(__name__)


def build_login_params(username: str, password_hash: str) -> dict[str, Any]:
    """Build the JSON body for the login action.

    Parameters
    ----------
    username : str
        Account name.
    password_hash : str
        Lowercase MD5 hex of the account password.

    Returns
    -------
    dict
        The request body.
    """
    return {
        "username": username.strip(),
        "password": password_hash,
        "logintype": "WEB",
        "usertype": "USER",
    }


def parse_login_response(response: dict[str, Any], username: str) -> AuthResult:
    """Parse a login response into a tagged result.

    Parameters
    ----------
    response : dict
        Decoded response body.
    username : str
        Account name the request was sent for; used when the provider
        does not echo it back.

    Returns
    -------
    AuthOk or ApiFailure
    """
    if not is_success(response):
        return failure_from(response, ACTION_LOGIN)

    token = safe_str(response.get("token"))
    if token is None:
        _logger.debug("Login response without token: %s", redact_for_log(response))
        return ApiFailure(cause="Login response missing token", status=0, action=ACTION_LOGIN)

    return AuthOk(token=token, username=safe_str(response.get("username")) or username.strip())
