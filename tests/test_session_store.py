"""
tests/test_session_store.py -- Unit tests for auth/sessions.py.

Uses a named in-memory SQLite DB per test so each test starts empty.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from auth.sessions import SessionStore


@pytest.fixture
def sessions():
    store = SessionStore(f"sqlite:///file:test_sessions_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()


def _later(days: int = 14) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def test_persist_creates_unrevoked_row(sessions: SessionStore) -> None:
    expires = _later()
    row_id = sessions.persist(1, "tok-a", expires)
    row = sessions.find_active("tok-a")
    assert row is not None
    assert row.id == row_id
    assert row.user_id == 1
    assert row.revoked is False
    assert abs((row.expires_at - expires).total_seconds()) < 1


def test_find_active_unknown_token_is_none(sessions: SessionStore) -> None:
    assert sessions.find_active("never-issued") is None


def test_revoke_is_one_way_and_idempotent(sessions: SessionStore) -> None:
    sessions.persist(1, "tok-a", _later())
    assert sessions.revoke("tok-a") is True
    assert sessions.revoke("tok-a") is False
    assert sessions.find_active("tok-a") is None
    assert sessions.get_by_token("tok-a").revoked is True


def test_revoke_unknown_token_is_not_an_error(sessions: SessionStore) -> None:
    assert sessions.revoke("never-issued") is False


def test_revoked_and_unknown_look_the_same(sessions: SessionStore) -> None:
    sessions.persist(1, "tok-a", _later())
    sessions.revoke("tok-a")
    assert sessions.find_active("tok-a") == sessions.find_active("never-issued")


def test_revoke_all_for_user_only_touches_that_user(sessions: SessionStore) -> None:
    sessions.persist(1, "u1-a", _later())
    sessions.persist(1, "u1-b", _later())
    sessions.persist(2, "u2-a", _later())
    assert sessions.revoke_all_for_user(1) == 2
    assert sessions.find_active("u1-a") is None
    assert sessions.find_active("u1-b") is None
    assert sessions.find_active("u2-a") is not None


def test_revoke_all_counts_only_live_rows(sessions: SessionStore) -> None:
    sessions.persist(1, "u1-a", _later())
    sessions.revoke("u1-a")
    sessions.persist(1, "u1-b", _later())
    assert sessions.revoke_all_for_user(1) == 1


def test_find_active_returns_expired_rows(sessions: SessionStore) -> None:
    """Expiry is the caller's check; an expired row must still be visible so it can be revoked."""
    sessions.persist(1, "old", datetime.now(timezone.utc) - timedelta(seconds=5))
    row = sessions.find_active("old")
    assert row is not None
    assert row.expires_at < datetime.now(timezone.utc)


def test_duplicate_token_is_rejected(sessions: SessionStore) -> None:
    from sqlalchemy.exc import IntegrityError

    sessions.persist(1, "same", _later())
    with pytest.raises(IntegrityError):
        sessions.persist(2, "same", _later())


def test_transaction_commits_revoke_and_persist_together(sessions: SessionStore) -> None:
    sessions.persist(1, "first", _later())
    with sessions.transaction() as conn:
        sessions.revoke_all_for_user(1, conn=conn)
        sessions.persist(1, "second", _later(), conn=conn)
    assert sessions.find_active("first") is None
    assert sessions.find_active("second") is not None


def test_transaction_rolls_back_on_error(sessions: SessionStore) -> None:
    sessions.persist(1, "first", _later())
    with pytest.raises(RuntimeError):
        with sessions.transaction() as conn:
            sessions.revoke_all_for_user(1, conn=conn)
            raise RuntimeError("boom")
    assert sessions.find_active("first") is not None


def test_list_for_user_oldest_first(sessions: SessionStore) -> None:
    sessions.persist(3, "a", _later())
    sessions.persist(3, "b", _later())
    assert [r.token for r in sessions.list_for_user(3)] == ["a", "b"]


def test_find_and_revoke_by_id(sessions: SessionStore) -> None:
    row_id = sessions.persist(1, "tok-a", _later())
    other = sessions.persist(1, "tok-b", _later())

    assert sessions.find_active_by_id(row_id).token == "tok-a"
    assert sessions.revoke_by_id(row_id) is True
    assert sessions.revoke_by_id(row_id) is False
    assert sessions.find_active_by_id(row_id) is None
    assert sessions.find_active_by_id(other) is not None


def test_find_active_by_unknown_id_is_none(sessions: SessionStore) -> None:
    assert sessions.find_active_by_id(999) is None
    assert sessions.revoke_by_id(999) is False
