"""Durable storage for provider sessions.

The store is the single source of truth for the current session. It may
briefly hold more than one candidate while a session is being rotated;
readers take the one with the latest expiry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from gp51sync.exceptions import DatastoreError
from gp51sync.models.session import Session

_logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def get(self) -> Session | None:
        """The most recent session, or ``None``."""
        ...

    async def candidates(self, limit: int = 5) -> list[Session]:
        """Up to *limit* sessions ordered by ``expires_at`` descending."""
        ...

    async def put(self, session: Session) -> None:
        ...

    async def clear(self) -> None:
        ...


def _ordered(sessions: list[Session]) -> list[Session]:
    return sorted(sessions, key=lambda s: s.expires_at, reverse=True)


class MemorySessionStore:
    """Process-local store; loses sessions on restart."""

    def __init__(self, *, max_sessions: int = 5) -> None:
        self._max_sessions = max_sessions
        self._sessions: list[Session] = []

    async def get(self) -> Session | None:
        return self._sessions[0] if self._sessions else None

    async def candidates(self, limit: int = 5) -> list[Session]:
        return list(self._sessions[:limit])

    async def put(self, session: Session) -> None:
        others = [s for s in self._sessions if s.token != session.token]
        self._sessions = _ordered([session, *others])[: self._max_sessions]

    async def clear(self) -> None:
        self._sessions = []


class FileSessionStore:
    """JSON-file backed store.

    A process restart picks up the stored sessions, so a valid token is
    reused instead of forcing a new login. Writes are serialized by an
    :class:`asyncio.Lock` and replace the file atomically.
    """

    def __init__(self, path: str | os.PathLike[str], *, max_sessions: int = 5) -> None:
        self._path = Path(path)
        self._max_sessions = max_sessions
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> list[Session]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise DatastoreError(f"Cannot read session file {self._path}: {exc}") from exc

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Session file %s is corrupt; ignoring its contents", self._path)
            return []

        entries = payload.get("sessions", []) if isinstance(payload, dict) else []
        sessions: list[Session] = []
        for entry in entries:
            try:
                sessions.append(Session.model_validate(entry))
            except ValidationError:
                _logger.debug("Dropping invalid stored session entry", exc_info=True)
        return _ordered(sessions)

    def _write(self, sessions: list[Session]) -> None:
        payload = {"sessions": [s.model_dump(mode="json") for s in sessions]}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise DatastoreError(f"Cannot write session file {self._path}: {exc}") from exc

    async def get(self) -> Session | None:
        sessions = await asyncio.to_thread(self._read)
        return sessions[0] if sessions else None

    async def candidates(self, limit: int = 5) -> list[Session]:
        sessions = await asyncio.to_thread(self._read)
        return sessions[:limit]

    async def put(self, session: Session) -> None:
        async with self._lock:
            sessions = await asyncio.to_thread(self._read)
            merged = _ordered([session, *(s for s in sessions if s.token != session.token)])
            await asyncio.to_thread(self._write, merged[: self._max_sessions])

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, [])
