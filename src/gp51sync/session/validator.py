"""Session validation with caching and single-flight semantics.

:meth:`SessionValidator.ensure_valid_session` is the only way the rest of
the service obtains a token. It

1. answers from a short-lived cached verdict when possible,
2. lets concurrent callers share one in-flight validation,
3. probes stored session candidates with a bounded retry, and
4. falls back to a fresh login when no stored session works.

It never raises; every failure is reported in the returned
:class:`ValidationResult` and as a structured log event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from gp51sync._constants import BASE_URL
from gp51sync._hashing import password_hash
from gp51sync.client import TelemetryProvider
from gp51sync.config import SyncConfig
from gp51sync.exceptions import ErrorKind, Gp51Error, error_kind_for
from gp51sync.models.results import ApiFailure
from gp51sync.models.session import Session
from gp51sync.session.store import SessionStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ValidationResult(BaseModel):
    """Verdict of one validation."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    token: str | None = None
    owner_identity: str | None = None
    expires_at: datetime | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    validated_at: datetime = Field(default_factory=_utcnow)


class ErrorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    timestamp: datetime


class SessionValidator:
    """Ensures a usable provider session exists.

    Parameters
    ----------
    store : SessionStore
        Where sessions are read from and fresh ones written to.
    provider : TelemetryProvider
        Used for connectivity probes and re-authentication.
    username, password_hash : str
        Credentials for re-authentication. Empty disables the login fallback.
    valid_ttl, invalid_ttl : float
        Cache lifetime of valid / invalid verdicts, in seconds.
    wait_timeout : float
        How long a caller waits for another caller's in-flight validation.
    connectivity_attempts : int
        Probe attempts per candidate.
    retry_delay : float
        Fixed delay between probe attempts.
    clock : callable
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: SessionStore,
        provider: TelemetryProvider,
        *,
        username: str = "",
        password_hash: str = "",
        base_url: str = BASE_URL,
        session_ttl: float = 24 * 3600,
        valid_ttl: float = 30.0,
        invalid_ttl: float = 5.0,
        wait_timeout: float = 5.0,
        connectivity_attempts: int = 3,
        retry_delay: float = 1.0,
        candidate_limit: int = 5,
        clock: Callable[[], datetime] = _utcnow,
        max_error_events: int = 100,
    ) -> None:
        self._store = store
        self._provider = provider
        self._username = username
        self._password_hash = password_hash
        self._base_url = base_url
        self._session_ttl = timedelta(seconds=session_ttl)
        self._valid_ttl = valid_ttl
        self._invalid_ttl = invalid_ttl
        self._wait_timeout = wait_timeout
        self._connectivity_attempts = max(1, connectivity_attempts)
        self._retry_delay = retry_delay
        self._candidate_limit = candidate_limit
        self._clock = clock

        self._cached: ValidationResult | None = None
        self._cached_at: datetime | None = None
        self._inflight: asyncio.Future[ValidationResult] | None = None
        self._error_events: deque[ErrorEvent] = deque(maxlen=max_error_events)

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        store: SessionStore,
        provider: TelemetryProvider,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> SessionValidator:
        return cls(
            store,
            provider,
            username=config.username,
            password_hash=password_hash(config.password) if config.password else "",
            base_url=config.base_url,
            session_ttl=config.session_ttl,
            valid_ttl=config.validation_cache_ttl,
            invalid_ttl=config.invalid_cache_ttl,
            wait_timeout=config.validation_wait_timeout,
            connectivity_attempts=config.connectivity_attempts,
            retry_delay=config.connectivity_retry_delay,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def last_result(self) -> ValidationResult | None:
        """Most recent verdict, even if its cache lifetime has elapsed."""
        return self._cached

    @property
    def error_events(self) -> list[ErrorEvent]:
        return list(self._error_events)

    @property
    def is_validating(self) -> bool:
        return self._inflight is not None

    async def ensure_valid_session(self) -> ValidationResult:
        """Return a verdict on the current session, validating if needed."""
        cached = self._cached_verdict()
        if cached is not None:
            return cached

        inflight = self._inflight
        if inflight is not None:
            _logger.debug("Session validation already in progress, waiting")
            try:
                return await asyncio.wait_for(asyncio.shield(inflight), self._wait_timeout)
            except TimeoutError:
                return self._failure("Validation timeout", ErrorKind.API)

        future: asyncio.Future[ValidationResult] = asyncio.get_running_loop().create_future()
        self._inflight = future
        result: ValidationResult | None = None
        try:
            result = await self._validate()
        except Exception as exc:
            kind = error_kind_for(exc)
            self._record(kind, f"Session validation failed with exception: {exc}")
            result = self._failure(f"Validation failed: {exc}", kind)
        finally:
            if result is None:
                # Cancelled: release waiters with a failure instead of leaving them hanging.
                result = self._failure("Validation cancelled", ErrorKind.API)
            else:
                self._store_verdict(result)
            self._inflight = None
            if not future.done():
                future.set_result(result)
        return result

    def force_revalidation(self) -> None:
        """Expire the cached verdict; the next caller re-probes the stored session."""
        self._cached_at = None

    def clear_cache(self) -> None:
        """Drop the cached verdict entirely."""
        self._cached = None
        self._cached_at = None

    async def invalidate_session(self) -> None:
        """Clear the stored session and the cache; the next caller logs in again."""
        self.clear_cache()
        await self._store.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached_verdict(self) -> ValidationResult | None:
        cached = self._cached
        if cached is None or self._cached_at is None:
            return None
        now = self._clock()
        ttl = self._valid_ttl if cached.valid else self._invalid_ttl
        if (now - self._cached_at).total_seconds() >= ttl:
            return None
        if cached.valid and cached.expires_at is not None and now >= cached.expires_at:
            return None
        return cached

    def _store_verdict(self, result: ValidationResult) -> None:
        self._cached = result
        self._cached_at = self._clock()

    def _record(self, kind: ErrorKind, message: str) -> None:
        self._error_events.append(ErrorEvent(kind=kind, message=message, timestamp=self._clock()))
        _logger.warning("GP51 %s error: %s", kind.value, message, extra={"error_kind": kind.value})

    def _failure(self, message: str, kind: ErrorKind) -> ValidationResult:
        return ValidationResult(valid=False, error=message, error_kind=kind, validated_at=self._clock())

    def _success(self, session: Session) -> ValidationResult:
        return ValidationResult(
            valid=True,
            token=session.token,
            owner_identity=session.owner_identity,
            expires_at=session.expires_at,
            validated_at=self._clock(),
        )

    async def _validate(self) -> ValidationResult:
        now = self._clock()
        try:
            candidates = await self._store.candidates(limit=self._candidate_limit)
        except Gp51Error as exc:
            self._record(ErrorKind.DATASTORE, f"Session store unavailable: {exc}")
            candidates = []

        for session in candidates:
            if session.is_expired(now):
                _logger.debug("Session for %s expired at %s, skipping", session.owner_identity, session.expires_at)
                continue
            if await self._probe(session):
                _logger.info("GP51 session for %s validated", session.owner_identity)
                return self._success(session)

        return await self._authenticate()

    async def _probe(self, session: Session) -> bool:
        """Test *session* with up to ``connectivity_attempts`` attempts."""
        kind = ErrorKind.AUTHENTICATION
        message = ""
        for attempt in range(1, self._connectivity_attempts + 1):
            _logger.debug(
                "Testing GP51 session for %s (attempt %d/%d)",
                session.owner_identity,
                attempt,
                self._connectivity_attempts,
            )
            try:
                if await self._provider.test_connectivity(session.token):
                    return True
                kind = ErrorKind.AUTHENTICATION
                message = f"Session for {session.owner_identity} rejected by provider"
            except Gp51Error as exc:
                kind = error_kind_for(exc)
                message = f"Session test for {session.owner_identity} failed: {exc}"
            except Exception as exc:
                _logger.debug("Unexpected error testing session for %s", session.owner_identity, exc_info=True)
                kind = error_kind_for(exc)
                message = f"Session test for {session.owner_identity} failed: {exc}"

            if attempt < self._connectivity_attempts and self._retry_delay > 0:
                await asyncio.sleep(self._retry_delay)

        self._record(kind, message)
        return False

    async def _authenticate(self) -> ValidationResult:
        if not self._username or not self._password_hash:
            message = "No usable GP51 session and no credentials configured"
            self._record(ErrorKind.AUTHENTICATION, message)
            return self._failure(message, ErrorKind.AUTHENTICATION)

        try:
            result = await self._provider.authenticate(self._username, self._password_hash)
        except Gp51Error as exc:
            kind = error_kind_for(exc)
            self._record(kind, f"Authentication request failed: {exc}")
            return self._failure(f"Authentication request failed: {exc}", kind)

        if isinstance(result, ApiFailure):
            message = f"Authentication failed: {result.cause}"
            self._record(ErrorKind.AUTHENTICATION, message)
            return self._failure(message, ErrorKind.AUTHENTICATION)

        now = self._clock()
        session = Session(
            token=result.token,
            owner_identity=result.username,
            expires_at=now + self._session_ttl,
            provider_base_url=self._base_url,
            created_at=now,
        )
        try:
            await self._store.put(session)
        except Gp51Error as exc:
            # Still usable in-process; only restart recovery is affected.
            self._record(ErrorKind.DATASTORE, f"Could not persist new session: {exc}")

        _logger.info("Authenticated with GP51 as %s", session.owner_identity)
        return self._success(session)
