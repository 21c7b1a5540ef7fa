"""
tests/test_password_reset.py -- Unit tests for auth/password_reset.py and auth/mailer.py.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import PasswordMismatch, ResetCodeInvalid
from auth.mailer import Mailer, redact_email
from auth.models import User
from auth.password_reset import PasswordResetFlow, generate_code
from auth.passwords import hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore

NEW_PASSWORD = "Fresh#4567"


class _Sender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, int]] = []

    def send_reset_code(self, to_email: str, code: str, ttl_seconds: int) -> bool:
        self.sent.append((to_email, code, ttl_seconds))
        return True


@pytest.fixture
def env():
    url = f"sqlite:///file:test_reset_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    users = UserStore(url)
    sessions = SessionStore(url)
    sender = _Sender()
    uid = users.create_user(User(email="member@example.com", nickname="member", hashed_password=hash_password("Old#12345")))
    yield users, sessions, sender, uid
    sessions.close()
    users.close()


def test_generate_code_is_six_digits() -> None:
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()


def test_request_code_mails_a_code_and_stores_only_its_hash(env) -> None:
    users, sessions, sender, uid = env
    flow = PasswordResetFlow(users, sessions, sender, code_ttl_seconds=300)
    flow.request_code(" Member@Example.com ")
    assert len(sender.sent) == 1
    to, code, ttl = sender.sent[0]
    assert to == "member@example.com"
    assert ttl == 300
    pending = users.get_pending_reset_code(uid)
    assert pending is not None
    assert pending.code_hash != code
    assert verify_password(code, pending.code_hash)


def test_request_code_for_unknown_email_sends_nothing(env) -> None:
    users, sessions, sender, _ = env
    PasswordResetFlow(users, sessions, sender).request_code("nobody@example.com")
    assert sender.sent == []


def test_request_code_for_withdrawn_account_sends_nothing(env) -> None:
    users, sessions, sender, uid = env
    users.soft_delete(uid)
    PasswordResetFlow(users, sessions, sender).request_code("member@example.com")
    assert sender.sent == []


def test_verify_code(env) -> None:
    users, sessions, sender, _ = env
    flow = PasswordResetFlow(users, sessions, sender)
    flow.request_code("member@example.com")
    code = sender.sent[-1][1]
    wrong = "000000" if code != "000000" else "111111"
    assert flow.verify_code("member@example.com", code) is True
    assert flow.verify_code("member@example.com", wrong) is False
    assert flow.verify_code("nobody@example.com", code) is False
    # Verification does not consume the code.
    assert flow.verify_code("member@example.com", code) is True


def test_new_request_replaces_old_code(env) -> None:
    users, sessions, sender, _ = env
    flow = PasswordResetFlow(users, sessions, sender)
    flow.request_code("member@example.com")
    first = sender.sent[-1][1]
    flow.request_code("member@example.com")
    second = sender.sent[-1][1]
    if first != second:
        assert flow.verify_code("member@example.com", first) is False
    assert flow.verify_code("member@example.com", second) is True


def test_expired_code_is_rejected(env) -> None:
    users, sessions, sender, _ = env
    issued_at = datetime.now(timezone.utc) - timedelta(minutes=10)
    PasswordResetFlow(users, sessions, sender, code_ttl_seconds=300, clock=lambda: issued_at).request_code(
        "member@example.com"
    )
    flow = PasswordResetFlow(users, sessions, sender, code_ttl_seconds=300)
    assert flow.verify_code("member@example.com", sender.sent[-1][1]) is False


def test_reset_password_updates_hash_consumes_code_and_revokes_sessions(env) -> None:
    users, sessions, sender, uid = env
    sessions.persist(uid, "live-session", datetime.now(timezone.utc) + timedelta(days=1))
    flow = PasswordResetFlow(users, sessions, sender)
    flow.request_code("member@example.com")
    code = sender.sent[-1][1]

    flow.reset_password("member@example.com", code, NEW_PASSWORD, NEW_PASSWORD)

    assert verify_password(NEW_PASSWORD, users.get_by_id(uid).hashed_password)
    assert sessions.find_active("live-session") is None
    with pytest.raises(ResetCodeInvalid):
        flow.reset_password("member@example.com", code, NEW_PASSWORD, NEW_PASSWORD)


def test_reset_password_mismatch(env) -> None:
    users, sessions, sender, uid = env
    flow = PasswordResetFlow(users, sessions, sender)
    flow.request_code("member@example.com")
    with pytest.raises(PasswordMismatch):
        flow.reset_password("member@example.com", sender.sent[-1][1], NEW_PASSWORD, "Other#4567")
    assert verify_password("Old#12345", users.get_by_id(uid).hashed_password)


def test_reset_password_without_code_request(env) -> None:
    users, sessions, sender, _ = env
    with pytest.raises(ResetCodeInvalid):
        PasswordResetFlow(users, sessions, sender).reset_password(
            "member@example.com", "123456", NEW_PASSWORD, NEW_PASSWORD
        )


# ---------------------------------------------------------------------------
# Mailer
# ---------------------------------------------------------------------------


def test_redact_email() -> None:
    assert redact_email("member@example.com") == "me***@example.com"
    assert redact_email("not-an-email") == "redacted"


def test_unconfigured_mailer_logs_instead_of_sending(caplog) -> None:
    mailer = Mailer()
    assert mailer.is_configured is False
    with caplog.at_level(logging.INFO, logger="community.mail"):
        assert mailer.send_reset_code("member@example.com", "123456", 300) is True
    assert "me***@example.com" in caplog.text
    assert "member@example.com" not in caplog.text


def test_smtp_failure_returns_false(monkeypatch) -> None:
    import smtplib

    class _Broken:
        def __init__(self, *args, **kwargs) -> None:
            raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(smtplib, "SMTP", _Broken)
    mailer = Mailer(smtp_host="mail.example.com", from_email="noreply@example.com")
    assert mailer.send_reset_code("member@example.com", "123456", 300) is False
