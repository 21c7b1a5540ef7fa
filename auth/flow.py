"""
auth/flow.py -- Login, refresh and logout orchestration.

  login   -- credential check -> revoke prior sessions -> issue access +
             refresh -> persist refresh -> set both cookies.
  refresh -- verify the signed refresh token and its persisted row, then
             mint a new access token only. The refresh token is NOT rotated:
             it stays valid until its own expiry or an explicit revoke, and
             its cookie is never rewritten here.
  logout  -- best-effort revoke of the presented refresh token, then clear
             both cookies unconditionally.
  change_password -- store a new hash for an authenticated user and end
             every one of their sessions.

Failures are raised as typed AuthError subclasses (auth/errors.py); the API
layer maps each to a status code. Nothing here retries.

Enumeration resistance [C1]: an unknown email still runs bcrypt against a
dummy hash, and unknown email / wrong password raise the same
InvalidCredentials. Revoked and never-issued refresh tokens raise the same
InvalidToken.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.errors import (
    InvalidCredentials,
    InvalidToken,
    MissingToken,
    PasswordMismatch,
    PasswordReused,
    TokenExpired,
)
from auth.models import User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE, REFRESH_TOKEN_TYPE, TokenIssuer, clear_token_cookie, set_token_cookie

if TYPE_CHECKING:
    from starlette.responses import Response

logger = logging.getLogger("community.auth")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    user: User
    session_id: int


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    refresh_token: str


class AuthFlow:
    """Ties TokenIssuer, SessionStore and the user collaborator together.

    password_verifier is the opaque verify(raw, stored) -> bool collaborator;
    it defaults to bcrypt.
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        password_verifier: Callable[[str, str], bool] = verify_password,
        secure_cookies: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.issuer = issuer
        self.verify_password = password_verifier
        self.secure_cookies = secure_cookies
        self._clock = clock

    @property
    def access_max_age(self) -> int:
        return int(self.issuer.access_ttl.total_seconds())

    @property
    def refresh_max_age(self) -> int:
        return int(self.issuer.refresh_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(self, email: str, raw_password: str) -> User:
        """Return the user for a correct email/password pair, else raise InvalidCredentials.

        Soft-deleted accounts are looked up too, so a withdrawn account with
        a wrong password fails exactly like an email nobody registered.
        """
        user = self.users.get_by_email(normalize_email(email), include_deleted=True)
        if user is None or not user.hashed_password:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.verify_password(raw_password, DUMMY_HASH)
            logger.info("Login failed: no matching account")
            raise InvalidCredentials()
        if not self.verify_password(raw_password, user.hashed_password):
            logger.info("Login failed: wrong password for user_id=%s", user.id)
            raise InvalidCredentials()
        return user

    def login(self, email: str, raw_password: str, remember_me: bool, response: Response) -> LoginResult:
        """Authenticate, replace every prior session with a new one and set both cookies."""
        user = self.authenticate(email, raw_password)

        # One transaction: the revoke can never touch the row inserted below,
        # and a concurrent login for the same user lands entirely before or
        # after this one.
        with self.sessions.transaction() as conn:
            self.sessions.revoke_all_for_user(user.id, conn=conn)
            access_token = self.issuer.issue_access(user.id, user.role)
            refresh_token = self.issuer.issue_refresh(user.id)
            session_id = self.sessions.persist(user.id, refresh_token, self.issuer.refresh_expiry(), conn=conn)

        set_token_cookie(response, ACCESS_COOKIE, access_token, self.access_max_age, self.secure_cookies)
        set_token_cookie(
            response,
            REFRESH_COOKIE,
            refresh_token,
            self.refresh_max_age if remember_me else None,
            self.secure_cookies,
        )
        logger.info("Login succeeded for user_id=%s (remember_me=%s)", user.id, remember_me)
        return LoginResult(
            access_token=access_token, refresh_token=refresh_token, user=user, session_id=session_id
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None, response: Response) -> RefreshResult:
        """Mint a new access token from a live refresh token.

        Raises:
            MissingToken:  no refresh token was presented.
            InvalidToken:  bad signature, garbage, wrong token type, revoked,
                           never issued, or the user no longer exists.
            TokenExpired:  the signed exp or the persisted expires_at has
                           passed. The persisted row is revoked either way.
        """
        if not refresh_token:
            raise MissingToken()

        try:
            claims = self.issuer.verify(refresh_token)
        except TokenExpired:
            # Signature was checked before expiry, so this token is ours.
            self.sessions.revoke(refresh_token)
            logger.info("Refresh rejected: signed token expired")
            raise
        except InvalidToken as exc:
            logger.warning("Refresh rejected: %s", type(exc).__name__)
            raise InvalidToken() from None

        if claims.type != REFRESH_TOKEN_TYPE:
            logger.warning("Refresh rejected: access token presented for user_id=%s", claims.subject)
            raise InvalidToken()

        record = self.sessions.find_active(refresh_token)
        if record is None or record.user_id != claims.subject:
            logger.info("Refresh rejected: no active session for user_id=%s", claims.subject)
            raise InvalidToken()

        if record.expires_at <= self._clock():
            self.sessions.revoke(refresh_token)
            logger.info("Refresh rejected: stored session expired for user_id=%s", record.user_id)
            raise TokenExpired()

        user = self.users.get_by_id(record.user_id, include_deleted=True)
        if user is None:
            raise InvalidToken()

        access_token = self.issuer.issue_access(user.id, user.role)
        set_token_cookie(response, ACCESS_COOKIE, access_token, self.access_max_age, self.secure_cookies)
        return RefreshResult(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Logout and session teardown
    # ------------------------------------------------------------------

    def clear_cookies(self, response: Response) -> None:
        clear_token_cookie(response, ACCESS_COOKIE, self.secure_cookies)
        clear_token_cookie(response, REFRESH_COOKIE, self.secure_cookies)

    def logout(self, refresh_token: str | None, response: Response) -> bool:
        """Revoke the presented refresh token if it is live, then clear both cookies.

        Returns True if a persisted session was revoked by this call. An
        absent, unknown or already revoked token is not an error.
        """
        revoked = False
        if refresh_token:
            revoked = self.sessions.revoke(refresh_token)
        self.clear_cookies(response)
        return revoked

    def withdraw(self, user_id: int, response: Response) -> None:
        """Soft-delete an account and end every one of its sessions."""
        self.users.soft_delete(user_id)
        self.sessions.revoke_all_for_user(user_id)
        self.clear_cookies(response)
        logger.info("Account withdrawn for user_id=%s", user_id)

    def change_password(self, user_id: int, new_password: str, confirm_password: str, response: Response) -> None:
        """Replace the password of an authenticated user, then sign them out everywhere.

        Raises:
            PasswordMismatch: the confirmation differs from the new password.
            PasswordReused:   the new password is the current one.
            InvalidToken:     the account no longer exists.
        """
        if new_password != confirm_password:
            raise PasswordMismatch()
        user = self.users.get_by_id(user_id)
        if user is None:
            raise InvalidToken()
        if self.verify_password(new_password, user.hashed_password):
            raise PasswordReused()
        self.users.update_password(user_id, hash_password(new_password))
        self.sessions.revoke_all_for_user(user_id)
        self.clear_cookies(response)
        logger.info("Password changed for user_id=%s", user_id)
