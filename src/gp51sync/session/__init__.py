"""Provider session ownership and validation."""

from gp51sync.session.store import FileSessionStore, MemorySessionStore, SessionStore
from gp51sync.session.validator import ErrorEvent, SessionValidator, ValidationResult

__all__ = [
    "ErrorEvent",
    "FileSessionStore",
    "MemorySessionStore",
    "SessionStore",
    "SessionValidator",
    "ValidationResult",
]
