"""
auth/password_reset.py -- Email-code password reset.

  request_code   -- always succeeds from the caller's point of view. For a
                    known, active account a 6-digit code is hashed, stored
                    with an expiry and mailed; for anything else nothing
                    happens. The response never reveals which.
  verify_code    -- checks a code without consuming it (lets the UI move
                    to the "new password" step).
  reset_password -- checks the code again, stores the new hash, consumes the
                    code and revokes every session of the account.

Codes live in the password_reset_codes table (auth/store.py) and expiry is
checked on read. There is no process-wide code map.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from auth.errors import PasswordMismatch, ResetCodeInvalid
from auth.flow import normalize_email
from auth.models import ResetCode, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("community.auth")

_CODE_DIGITS = 6


class CodeSender(Protocol):
    def send_reset_code(self, to_email: str, code: str, ttl_seconds: int) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    return f"{secrets.randbelow(10**_CODE_DIGITS):0{_CODE_DIGITS}d}"


class PasswordResetFlow:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        sender: CodeSender,
        code_ttl_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.sender = sender
        self.code_ttl_seconds = code_ttl_seconds
        self._clock = clock

    def request_code(self, email: str) -> None:
        user = self.users.get_by_email(normalize_email(email))
        if user is None:
            logger.info("Password reset requested for unknown or withdrawn account")
            return
        code = generate_code()
        expires_at = self._clock() + timedelta(seconds=self.code_ttl_seconds)
        self.users.create_reset_code(user.id, hash_password(code), expires_at)
        if not self.sender.send_reset_code(user.email, code, self.code_ttl_seconds):
            logger.warning("Password reset code for user_id=%s could not be delivered", user.id)

    def _check(self, email: str, code: str) -> tuple[User, ResetCode]:
        user = self.users.get_by_email(normalize_email(email))
        pending = self.users.get_pending_reset_code(user.id) if user is not None else None
        if user is None or pending is None:
            # Same bcrypt cost as a real check.
            verify_password(code, DUMMY_HASH)
            raise ResetCodeInvalid()
        if not verify_password(code, pending.code_hash) or pending.expires_at <= self._clock():
            raise ResetCodeInvalid()
        return user, pending

    def verify_code(self, email: str, code: str) -> bool:
        """True if code is the live code for email. Does not consume it."""
        try:
            self._check(email, code)
        except ResetCodeInvalid:
            return False
        return True

    def reset_password(self, email: str, code: str, new_password: str, confirm_password: str) -> None:
        if new_password != confirm_password:
            raise PasswordMismatch()
        user, pending = self._check(email, code)
        self.users.update_password(user.id, hash_password(new_password))
        self.users.mark_reset_code_used(pending.id)
        self.sessions.revoke_all_for_user(user.id)
        logger.info("Password reset completed for user_id=%s", user.id)
