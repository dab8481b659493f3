"""asyncpg-backed datastore and session store.

Uses ``asyncpg`` for direct database access. The pool is owned by the
caller (normally :class:`~gp51sync.service.FleetSyncService`); nothing
here keeps module-level state.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import asyncpg
from pydantic import ValidationError

from gp51sync.exceptions import DatastoreError
from gp51sync.models.metrics import PollingConfig
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice
from gp51sync.models.session import Session

_logger = logging.getLogger(__name__)

_DEVICE_COLUMNS = "device_id, device_name, is_active, owner_id, last_position, status, updated_at"


async def create_pool(dsn: str, *, min_size: int = 2, max_size: int = 10) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at service startup."""
    try:
        pool = await asyncpg.create_pool(dsn, min_size=min_size, max_size=max_size, command_timeout=30)
    except (asyncpg.PostgresError, OSError) as exc:
        raise DatastoreError(f"Cannot connect to database: {exc}") from exc
    _logger.info("Database pool initialized (min=%d, max=%d)", min_size, max_size)
    return pool


def _decode_json(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _device_from_row(row: asyncpg.Record) -> TrackedDevice:
    device_id = str(row["device_id"])
    last_position: PositionFix | None = None
    payload = _decode_json(row["last_position"])
    if payload:
        try:
            last_position = PositionFix.model_validate({**payload, "deviceid": device_id})
        except ValidationError:
            _logger.debug("Ignoring unreadable last_position for %s", device_id, exc_info=True)

    status: DeviceStatus | None = None
    if row["status"] in DeviceStatus._value2member_map_:
        status = DeviceStatus(row["status"])

    return TrackedDevice(
        device_id=device_id,
        display_name=row["device_name"] or "",
        active=bool(row["is_active"]),
        owner_id=str(row["owner_id"]) if row["owner_id"] is not None else None,
        last_position=last_position,
        status=status,
        updated_at=row["updated_at"],
    )


class PostgresDatastore:
    """Datastore over the ``vehicles`` and ``gp51_polling_config`` tables."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, OSError) as exc:
            raise DatastoreError(str(exc)) from exc

    async def list_active_devices(self) -> list[TrackedDevice]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DEVICE_COLUMNS} FROM vehicles WHERE is_active = true ORDER BY device_id"
            )
        return [_device_from_row(row) for row in rows]

    async def list_stale_devices(self, older_than: datetime) -> list[TrackedDevice]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DEVICE_COLUMNS} FROM vehicles "
                "WHERE is_active = true AND (last_position IS NULL "
                "OR (last_position->>'updatetime') IS NULL "
                "OR (last_position->>'updatetime')::timestamptz < $1) "
                "ORDER BY device_id",
                older_than,
            )
        return [_device_from_row(row) for row in rows]

    async def update_device_position(self, device_id: str, fix: PositionFix, status: DeviceStatus) -> None:
        async with self._connection() as conn:
            result = await conn.execute(
                "UPDATE vehicles SET last_position = $2::jsonb, status = $3, updated_at = now() "
                "WHERE device_id = $1",
                device_id,
                json.dumps(fix.to_record()),
                status.value,
            )
        if result.endswith(" 0"):
            raise DatastoreError(f"Unknown device {device_id}")

    async def update_polling_status(
        self,
        last_poll_time: datetime,
        success: bool,
        error_message: str | None,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "SELECT update_polling_status($1, $2, $3)",
                last_poll_time,
                success,
                error_message,
            )

    async def get_polling_config(self) -> PollingConfig | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT interval_seconds, is_enabled, error_count, last_poll_time, "
                "last_successful_poll, last_error FROM gp51_polling_config LIMIT 1"
            )
        if row is None:
            return None
        return PollingConfig(
            interval_seconds=float(row["interval_seconds"]),
            is_enabled=bool(row["is_enabled"]),
            error_count=int(row["error_count"] or 0),
            last_poll_time=row["last_poll_time"],
            last_successful_poll=row["last_successful_poll"],
            last_error=row["last_error"],
        )

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("SELECT 1")


class PostgresSessionStore:
    """Session store over the ``gp51_sessions`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self) -> Session | None:
        sessions = await self.candidates(limit=1)
        return sessions[0] if sessions else None

    async def candidates(self, limit: int = 5) -> list[Session]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT username, gp51_token, token_expires_at, api_url, created_at "
                    "FROM gp51_sessions WHERE gp51_token IS NOT NULL "
                    "ORDER BY token_expires_at DESC LIMIT $1",
                    limit,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise DatastoreError(str(exc)) from exc

        sessions: list[Session] = []
        for row in rows:
            kwargs: dict[str, Any] = {
                "token": row["gp51_token"],
                "owner_identity": row["username"] or "",
                "expires_at": row["token_expires_at"],
            }
            if row["api_url"]:
                kwargs["provider_base_url"] = row["api_url"]
            if row["created_at"] is not None:
                kwargs["created_at"] = row["created_at"]
            try:
                sessions.append(Session(**kwargs))
            except ValidationError:
                _logger.debug("Dropping invalid gp51_sessions row", exc_info=True)
        return sessions

    async def put(self, session: Session) -> None:
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO gp51_sessions (username, gp51_token, token_expires_at, api_url, created_at) "
                    "VALUES ($1, $2, $3, $4, $5)",
                    session.owner_identity,
                    session.token,
                    session.expires_at,
                    session.provider_base_url,
                    session.created_at,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise DatastoreError(str(exc)) from exc

    async def clear(self) -> None:
        try:
            async with self._pool.acquire() as conn:
                await conn.execute("DELETE FROM gp51_sessions")
        except (asyncpg.PostgresError, OSError) as exc:
            raise DatastoreError(str(exc)) from exc
