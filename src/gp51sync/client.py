"""Async client for the GP51 telemetry provider."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

import aiohttp

from gp51sync._api.login import build_login_params, parse_login_response
from gp51sync._api.positions import build_last_position_params, parse_last_position_response
from gp51sync._api.validate import parse_validate_response
from gp51sync._constants import ACTION_LAST_POSITION, ACTION_LOGIN, ACTION_VALIDATE_TOKEN
from gp51sync._transport import HttpTransport, Transport
from gp51sync.config import SyncConfig
from gp51sync.exceptions import Gp51Error, Gp51TransportError
from gp51sync.models.results import AuthResult, PositionsOk, PositionsResult

_logger = logging.getLogger(__name__)


class TelemetryProvider(Protocol):
    """The three provider operations the sync core depends on."""

    async def authenticate(self, username: str, password_hash: str) -> AuthResult:
        ...

    async def fetch_positions(
        self,
        device_ids: Sequence[str],
        token: str,
        last_query_time: datetime | None = None,
    ) -> PositionsResult:
        ...

    async def test_connectivity(self, token: str) -> bool:
        ...


class Gp51Client:
    """Async client for the GP51 ``webapi``.

    Usage::

        async with Gp51Client(config) as client:
            result = await client.authenticate(config.username, password_hash(config.password))
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Gp51Client:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
                )
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise Gp51Error("Client not initialized. Use 'async with Gp51Client(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Provider operations
    # ------------------------------------------------------------------

    async def authenticate(self, username: str, password_hash: str) -> AuthResult:
        """Log in and return the issued token, or the provider's failure cause."""
        transport = self._require_transport()
        response = await transport.post_action(ACTION_LOGIN, build_login_params(username, password_hash))
        result = parse_login_response(response, username)
        _logger.debug("Login for %s: %s", username, type(result).__name__)
        return result

    async def fetch_positions(
        self,
        device_ids: Sequence[str],
        token: str,
        last_query_time: datetime | None = None,
    ) -> PositionsResult:
        """Fetch the latest fix for each device in *device_ids* (one request)."""
        transport = self._require_transport()
        response = await transport.post_action(
            ACTION_LAST_POSITION,
            build_last_position_params(device_ids, last_query_time),
            token=token,
        )
        result = parse_last_position_response(response)
        if isinstance(result, PositionsOk):
            _logger.debug(
                "lastposition: requested=%d received=%d skipped=%d",
                len(device_ids),
                len(result.records),
                result.skipped,
            )
        return result

    async def test_connectivity(self, token: str) -> bool:
        """Probe the provider with *token*.

        Raises
        ------
        Gp51TransportError
            If the provider is unreachable; a reachable provider that
            rejects the token yields ``False``.
        """
        transport = self._require_transport()
        try:
            response = await transport.post_action(ACTION_VALIDATE_TOKEN, token=token)
        except Gp51TransportError as exc:
            # 401/403 mean the provider is up and said no.
            if exc.status_code in (401, 403):
                return False
            raise
        return parse_validate_response(response)
