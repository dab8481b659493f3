from __future__ import annotations

import json
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any

import pytest

from conftest import T0, FakeClock
from gp51sync.datastore.memory import InMemoryDatastore
from gp51sync.datastore.postgres import PostgresDatastore, PostgresSessionStore
from gp51sync.exceptions import DatastoreError
from gp51sync.models.position import DeviceStatus, PositionFix, TrackedDevice
from gp51sync.models.session import Session


class _FakeConnection:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.execute_result = "UPDATE 1"
        self.queries: list[tuple[str, tuple[Any, ...]]] = []

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        self.queries.append((query, args))
        return self.rows

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        self.queries.append((query, args))
        return self.rows[0] if self.rows else None

    async def fetchval(self, query: str, *args: Any) -> Any:
        self.queries.append((query, args))
        return 1

    async def execute(self, query: str, *args: Any) -> str:
        self.queries.append((query, args))
        return self.execute_result


class _FakePool:
    def __init__(self) -> None:
        self.conn = _FakeConnection()
        self.error: Exception | None = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[_FakeConnection]:
        if self.error is not None:
            raise self.error
        yield self.conn


@pytest.mark.asyncio
async def test_memory_datastore_polling_status_bookkeeping(clock: FakeClock) -> None:
    datastore = InMemoryDatastore(clock=clock)

    await datastore.update_polling_status(clock(), False, "provider down")
    await datastore.update_polling_status(clock(), False, "provider down")
    config = await datastore.get_polling_config()
    assert config is not None
    assert config.error_count == 2
    assert config.last_error == "provider down"

    await datastore.update_polling_status(clock(), True, None)
    config = await datastore.get_polling_config()
    assert config is not None
    assert config.error_count == 0
    assert config.last_successful_poll == clock()


@pytest.mark.asyncio
async def test_memory_datastore_rejects_unknown_device(clock: FakeClock) -> None:
    datastore = InMemoryDatastore([TrackedDevice(device_id="a")], clock=clock)
    fix = PositionFix(device_id="b", captured_at=clock())

    with pytest.raises(DatastoreError):
        await datastore.update_device_position("b", fix, DeviceStatus.STOPPED)


@pytest.mark.asyncio
async def test_postgres_device_rows_are_mapped() -> None:
    pool = _FakePool()
    pool.conn.rows = [
        {
            "device_id": 860001,
            "device_name": "Truck 1",
            "is_active": True,
            "owner_id": None,
            "last_position": json.dumps({"lat": 1.0, "lon": 2.0, "speed": 5, "updatetime": T0.isoformat()}),
            "status": "moving",
            "updated_at": T0,
        },
        {
            "device_id": "860002",
            "device_name": None,
            "is_active": True,
            "owner_id": 7,
            "last_position": None,
            "status": "unknown",
            "updated_at": None,
        },
    ]
    datastore = PostgresDatastore(pool)  # type: ignore[arg-type]

    first, second = await datastore.list_stale_devices(T0 - timedelta(days=1))

    assert first.device_id == "860001"
    assert first.status is DeviceStatus.MOVING
    assert first.last_fix_time == T0
    assert second.display_name == ""
    assert second.owner_id == "7"
    assert second.status is None
    assert second.last_position is None
    assert pool.conn.queries[0][1] == (T0 - timedelta(days=1),)


@pytest.mark.asyncio
async def test_postgres_update_of_unknown_device_raises() -> None:
    pool = _FakePool()
    pool.conn.execute_result = "UPDATE 0"
    datastore = PostgresDatastore(pool)  # type: ignore[arg-type]
    fix = PositionFix(device_id="x", lat=1.0, lon=2.0, captured_at=T0)

    with pytest.raises(DatastoreError, match="Unknown device x"):
        await datastore.update_device_position("x", fix, DeviceStatus.STOPPED)

    _, args = pool.conn.queries[0]
    assert args[0] == "x"
    assert json.loads(args[1])["updatetime"] == T0.isoformat()
    assert args[2] == "stopped"


@pytest.mark.asyncio
async def test_postgres_connection_errors_become_datastore_errors() -> None:
    pool = _FakePool()
    pool.error = OSError("connection refused")
    datastore = PostgresDatastore(pool)  # type: ignore[arg-type]

    with pytest.raises(DatastoreError):
        await datastore.ping()
    with pytest.raises(DatastoreError):
        await PostgresSessionStore(pool).get()  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_postgres_polling_status_calls_database_function() -> None:
    pool = _FakePool()
    datastore = PostgresDatastore(pool)  # type: ignore[arg-type]

    await datastore.update_polling_status(T0, False, "provider down")

    query, args = pool.conn.queries[0]
    assert "update_polling_status" in query
    assert args == (T0, False, "provider down")


@pytest.mark.asyncio
async def test_postgres_session_store_round_trip() -> None:
    pool = _FakePool()
    store = PostgresSessionStore(pool)  # type: ignore[arg-type]
    session = Session(token="tok", owner_identity="fleet-admin", expires_at=T0 + timedelta(hours=24), created_at=T0)

    await store.put(session)
    _, args = pool.conn.queries[0]
    assert args == ("fleet-admin", "tok", T0 + timedelta(hours=24), session.provider_base_url, T0)

    pool.conn.rows = [
        {
            "username": "fleet-admin",
            "gp51_token": "tok",
            "token_expires_at": T0 + timedelta(hours=24),
            "api_url": None,
            "created_at": T0,
        }
    ]
    loaded = await store.get()
    assert loaded == session
