"""Password hashing for the provider login action."""

from __future__ import annotations

import hashlib


def md5_hex(value: str) -> str:
    """Compute MD5 of a UTF-8 string, returning lowercase hex.

    The provider expects ``password`` as the lowercase MD5 digest of the
    plaintext password.

    Parameters
    ----------
    value : str
        The string to hash.

    Returns
    -------
    str
        32-character lowercase hex digest.
    """
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def is_md5_hex(value: str) -> bool:
    """Return ``True`` when *value* already looks like an MD5 hex digest."""
    stripped = value.strip()
    return len(stripped) == 32 and all(ch in "0123456789abcdefABCDEF" for ch in stripped)


def password_hash(password: str) -> str:
    """Normalize a configured password into the hash sent on login."""
    if is_md5_hex(password):
        return password.strip().lower()
    return md5_hex(password)
