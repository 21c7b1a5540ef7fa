"""
auth/passwords.py -- bcrypt password hashing (the password-verify collaborator).

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug self-check
builds a password longer than 72 bytes, which bcrypt 4.x rejects outright.

The identity core only ever calls verify_password(raw, stored) -> bool and
treats the hash format as opaque.
"""

from __future__ import annotations

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects or truncates input past 72 bytes, so the plaintext is cut
    to 72 UTF-8 bytes first and hashing and checking always agree.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# Timing equalization dummy hash [C1].
# Computed once at import so the first login attempt is not measurably slower
# than later ones. Login always runs bcrypt, even for an unknown email, so
# response time does not reveal whether an account exists.
DUMMY_HASH: str = hash_password("community_timing_dummy")
