"""
auth/sessions.py -- Persisted refresh tokens with a one-way revocation flag.

This is the only durable, stateful part of the identity core. A row is valid
iff revoked = 0 and expires_at is in the future. revoked only ever moves
0 -> 1; nothing else about a row is ever updated.

Transactions:
  Login must revoke every prior session for the user and insert the new one
  atomically. transaction() hands out one connection inside engine.begin();
  passing it as conn= to revoke_all_for_user() and persist() puts both in
  the same commit. There is no application-level lock -- concurrent logins
  for the same user serialize on the database, and the last write leaves
  the active session.

No background reaper: expired and revoked rows accumulate until an external
housekeeping job removes them.

Layer rule: no imports from api/, web/, core/, or content/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Connection, Engine

from auth.models import RefreshToken
from auth.store import make_engine, now_iso, parse_iso

logger = logging.getLogger("community.auth")

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token", String(1024), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


class SessionStore:
    """Repository for RefreshToken rows.

    Usage:
        sessions = SessionStore("sqlite:///community.db")
        with sessions.transaction() as conn:
            sessions.revoke_all_for_user(uid, conn=conn)
            sessions.persist(uid, token, expires_at, conn=conn)
        sessions.find_active(token)   # RefreshToken or None
        sessions.revoke(token)        # idempotent
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection whose statements commit together or not at all."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _begin(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def persist(self, user_id: int, token: str, expires_at: datetime, conn: Connection | None = None) -> int:
        """Insert a new, unrevoked refresh token row and return its ID."""
        with self._begin(conn) as c:
            result = c.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=expires_at.isoformat(),
                    revoked=0,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def revoke_all_for_user(self, user_id: int, conn: Connection | None = None) -> int:
        """Revoke every live row for user_id. Returns the number of rows flipped."""
        with self._begin(conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        if result.rowcount:
            logger.info("Revoked %d session(s) for user_id=%s", result.rowcount, user_id)
        return result.rowcount

    def revoke_by_id(self, session_id: int) -> bool:
        """Revoke one row by primary key. Same contract as revoke()."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == session_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def revoke(self, token: str) -> bool:
        """Revoke a single token. Absent or already revoked is a no-op, not an error.

        Returns True only if this call flipped a row.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_active(self, token: str) -> RefreshToken | None:
        """Return the row for token if it is not revoked.

        Revoked and never-issued tokens both come back as None; callers cannot
        and must not distinguish them. Expiry is not filtered here -- the
        refresh flow needs to see an expired row so it can revoke it.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked == 0)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def find_active_by_id(self, session_id: int) -> RefreshToken | None:
        """Like find_active(), keyed by row id. Used by the server-side session strategy."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.id == session_id) & (_refresh_tokens.c.revoked == 0)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Inspection -- for tests and housekeeping scripts; no request path
    # calls these.
    # ------------------------------------------------------------------

    def get_by_token(self, token: str) -> RefreshToken | None:
        """Return the row for token regardless of its revoked flag."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[RefreshToken]:
        """Return every row for a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id).order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=parse_iso(row.expires_at),
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )
