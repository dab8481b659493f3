"""HTTP transport for the GP51 ``webapi`` endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from gp51sync._constants import API_PATH, USER_AGENT
from gp51sync._redact import redact_for_log, redact_url
from gp51sync.config import SyncConfig
from gp51sync.exceptions import Gp51TransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the action modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def post_action(
        self,
        action: str,
        params: Mapping[str, Any] | None = None,
        *,
        token: str | None = None,
    ) -> dict[str, Any]:
        ...


class HttpTransport:
    """POSTs ``{base}/webapi?action=<action>[&token=<token>]`` with a JSON body."""

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def post_action(
        self,
        action: str,
        params: Mapping[str, Any] | None = None,
        *,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Send one action and return the decoded JSON object.

        The token travels in the query string only; a ``token`` key in
        *params* is dropped from the body.
        """
        query: dict[str, str] = {"action": action}
        if token:
            query["token"] = token

        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        body: str | None = None
        body_params = {k: v for k, v in (params or {}).items() if k != "token"}
        if body_params:
            headers["content-type"] = "application/json"
            body = json.dumps(body_params, separators=(",", ":"))

        url = f"{self._config.base_url}{API_PATH}"
        if self._config.api_trace_enabled:
            _logger.debug("POST %s action=%s body=%s", url, action, redact_for_log(body_params))
        else:
            _logger.debug("POST %s action=%s", url, action)

        try:
            async with self._http.post(url, params=query, data=body, headers=headers) as resp:
                payload = await resp.read()
                if resp.status != 200:
                    _logger.debug("HTTP %d from %s", resp.status, redact_url(str(resp.url)))
                    raise Gp51TransportError(
                        f"HTTP {resp.status} from {action}: {payload[:200].decode(errors='replace')}",
                        status_code=resp.status,
                        action=action,
                    )
        except Gp51TransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise Gp51TransportError(
                f"Request for {action} failed: {exc}",
                action=action,
            ) from exc

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise Gp51TransportError(
                f"Response from {action} is not valid UTF-8: {exc}",
                action=action,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise Gp51TransportError(
                f"Invalid JSON from {action}: {text[:200]}",
                action=action,
            ) from exc

        if not isinstance(result, dict):
            raise Gp51TransportError(
                f"Unexpected response shape from {action}: {type(result).__name__}",
                action=action,
            )

        if self._config.api_trace_enabled:
            _logger.debug("Response action=%s parsed=%s", action, redact_for_log(result))
        return result
