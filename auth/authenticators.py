"""
auth/authenticators.py -- Interchangeable strategies for "who is making this request".

Both strategies implement the same capability: extract a credential, verify
it, and report an AuthOutcome carrying the Identity to bind. A deployment
picks one at startup via AUTH_MODE; the request gate never knows which.

  TokenAuthenticator   -- Authorization: Bearer header first, then the
                          accessToken cookie; verified with TokenIssuer.
                          Only access tokens are accepted -- a refresh token
                          presented as a bearer credential is invalid.
  SessionAuthenticator -- Starlette's signed session cookie names a
                          session row in refresh_tokens; the row, not the
                          cookie, decides. Revoking the row (logout,
                          password change or reset, withdrawal, the next
                          login) ends the session even for a copied cookie.

remember()/forget() let the login and logout routes keep whichever strategy
is active in sync without branching on the mode.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from starlette.requests import Request

from auth.errors import AuthError
from auth.models import Identity
from auth.sessions import SessionStore
from auth.tokens import ACCESS_COOKIE, ACCESS_TOKEN_TYPE, TokenIssuer

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("community.auth")

_BEARER_PREFIX = "Bearer "

SESSION_USER_ID = "user_id"
SESSION_ROLE = "role"
SESSION_ID = "session_id"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthState(str, Enum):
    BYPASSED = "bypassed"
    TOKEN_MISSING = "token_missing"
    TOKEN_INVALID = "token_invalid"
    TOKEN_VALID = "token_valid"


@dataclass(frozen=True)
class AuthOutcome:
    state: AuthState
    identity: Identity | None = None
    reason: str | None = None  # failure code, logged but never sent to clients


class Authenticator(Protocol):
    def authenticate(self, request: Request) -> AuthOutcome: ...

    def remember(self, request: Request, identity: Identity, session_id: int) -> None: ...

    def forget(self, request: Request) -> None: ...


def extract_bearer_token(request: Request) -> str | None:
    """Return the credential from the Authorization header, else the accessToken cookie."""
    header = request.headers.get("Authorization", "")
    if header.startswith(_BEARER_PREFIX):
        token = header[len(_BEARER_PREFIX) :].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


class TokenAuthenticator:
    """Stateless bearer-token strategy. Does no I/O."""

    def __init__(self, issuer: TokenIssuer) -> None:
        self.issuer = issuer

    def authenticate(self, request: Request) -> AuthOutcome:
        token = extract_bearer_token(request)
        if token is None:
            return AuthOutcome(AuthState.TOKEN_MISSING)
        try:
            claims = self.issuer.verify(token)
        except AuthError as exc:
            return AuthOutcome(AuthState.TOKEN_INVALID, reason=exc.code)
        if claims.type != ACCESS_TOKEN_TYPE:
            return AuthOutcome(AuthState.TOKEN_INVALID, reason="wrong_token_type")
        return AuthOutcome(AuthState.TOKEN_VALID, identity=Identity(user_id=claims.subject, role=claims.role))

    def remember(self, request: Request, identity: Identity, session_id: int) -> None:
        # The token cookies set by AuthFlow are the whole session.
        return None

    def forget(self, request: Request) -> None:
        return None


class SessionAuthenticator:
    """Server-side session strategy.

    The signed cookie only says which session row to look at. Every request
    checks that row, so the cookie is worthless once the row is revoked or
    past its expiry.
    """

    def __init__(self, sessions: SessionStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.sessions = sessions
        self._clock = clock

    def authenticate(self, request: Request) -> AuthOutcome:
        session = request.scope.get("session") or {}
        raw_user_id = session.get(SESSION_USER_ID)
        raw_session_id = session.get(SESSION_ID)
        if raw_user_id is None or raw_session_id is None:
            return AuthOutcome(AuthState.TOKEN_MISSING)
        try:
            user_id = int(raw_user_id)
            session_id = int(raw_session_id)
        except (TypeError, ValueError):
            return AuthOutcome(AuthState.TOKEN_INVALID, reason="bad_session")

        record = self.sessions.find_active_by_id(session_id)
        if record is None or record.user_id != user_id:
            return AuthOutcome(AuthState.TOKEN_INVALID, reason="session_revoked")
        if record.expires_at <= self._clock():
            return AuthOutcome(AuthState.TOKEN_INVALID, reason="session_expired")

        role = session.get(SESSION_ROLE) or "USER"
        return AuthOutcome(AuthState.TOKEN_VALID, identity=Identity(user_id=user_id, role=role))

    def remember(self, request: Request, identity: Identity, session_id: int) -> None:
        request.session[SESSION_USER_ID] = identity.user_id
        request.session[SESSION_ROLE] = identity.role
        request.session[SESSION_ID] = session_id

    def forget(self, request: Request) -> None:
        """Revoke the session row, then drop the cookie contents."""
        if "session" not in request.scope:
            return
        raw_session_id = request.session.get(SESSION_ID)
        if raw_session_id is not None:
            try:
                self.sessions.revoke_by_id(int(raw_session_id))
            except (TypeError, ValueError):
                logger.warning("Discarding session with a malformed session id")
        request.session.clear()


def build_authenticator(settings: Settings, issuer: TokenIssuer, sessions: SessionStore) -> Authenticator:
    """Select the strategy named by AUTH_MODE."""
    if settings.auth_mode == "session":
        logger.info("Request authentication: server-side session")
        return SessionAuthenticator(sessions)
    logger.info("Request authentication: bearer token")
    return TokenAuthenticator(issuer)
