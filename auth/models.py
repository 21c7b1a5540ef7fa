"""
auth/models.py -- Domain dataclasses for identity and session entities.

Pattern: Data class (pure data container, zero logic). Stores and flows do
the work; these only own the shape.

Layer rule: no imports from api/, web/, core/, or content/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A community member as seen by the identity core.

    email is stored trimmed and lowercased. deleted_at is set when the account
    is withdrawn (soft delete); such rows are still visible to login lookups
    so a deleted account and an unknown email fail identically.
    """

    email: str
    nickname: str
    id: int | None = None
    hashed_password: str | None = None
    role: str = "USER"
    created_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class RefreshToken:
    """A persisted refresh token row.

    token is unique and immutable. revoked only ever goes False -> True.
    A row is valid iff not revoked and expires_at is in the future.
    """

    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    created_at: str | None = None


@dataclass
class ResetCode:
    """A short-lived password reset code. Only the bcrypt hash is stored."""

    user_id: int
    code_hash: str
    expires_at: datetime
    id: int | None = None
    used: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a signed token."""

    subject: int
    type: str  # "access" or "refresh"
    issued_at: datetime
    expires_at: datetime
    role: str | None = None  # access tokens only
    token_id: str | None = None  # refresh tokens only


@dataclass(frozen=True)
class Identity:
    """The authenticated principal bound to a request."""

    user_id: int
    role: str
