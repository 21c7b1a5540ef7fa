"""
tests/test_auth_routes.py -- Integration tests for POST/DELETE /auth, POST /auth/refresh
and the password reset endpoints.

Coverage:
  - login success: tokens in body and cookies, persisted live session
  - login failure: 400 bad_credentials, no session rows created or revoked
  - refresh: access cookie rotates, refresh cookie never rewritten
  - refresh failures: missing / invalid / expired (row revoked)
  - logout: cookies cleared unconditionally, refresh token dead afterwards
  - request validation: 400 validation_error
  - rate limiting on POST /auth
  - password reset: request, verify, confirm
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import settings
from auth.tokens import TokenIssuer


def _refresh_with(client: TestClient, token: str):
    return client.post("/auth/refresh", headers={"Cookie": f"refreshToken={token}"})


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success(self, client: TestClient, make_user, login, stores, cookie_header) -> None:
        user = make_user()
        resp = login()
        assert resp.status_code == 200
        body = resp.json()
        assert body["accessToken"]
        assert body["refreshToken"]
        assert body["user"] == {
            "id": user.id,
            "email": "member@example.com",
            "nickname": "member",
            "role": "USER",
            "createdAt": user.created_at,
        }
        row = stores.sessions.find_active(body["refreshToken"])
        assert row is not None and row.revoked is False
        assert resp.headers["cache-control"] == "no-store"

        access = cookie_header(resp, "accessToken")
        refresh = cookie_header(resp, "refreshToken")
        assert access.startswith(f"accessToken={body['accessToken']}")
        assert refresh.startswith(f"refreshToken={body['refreshToken']}")
        for header in (access, refresh):
            assert "HttpOnly" in header
            assert "Path=/" in header
        assert "Max-Age" not in refresh

    def test_remember_me_makes_refresh_cookie_persistent(self, client: TestClient, make_user, login, cookie_header) -> None:
        make_user()
        resp = login(remember_me=True)
        assert f"Max-Age={settings.refresh_token_ttl_seconds}" in cookie_header(resp, "refreshToken")

    def test_wrong_password(self, client: TestClient, make_user, login, stores) -> None:
        user = make_user()
        first = login().json()["refreshToken"]
        rows_before = len(stores.sessions.list_for_user(user.id))

        resp = login(password="Wrong#9999")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert len(stores.sessions.list_for_user(user.id)) == rows_before
        assert stores.sessions.find_active(first) is not None

    def test_password_is_compared_as_typed(self, client: TestClient, make_user, login) -> None:
        make_user()
        resp = login(password=" Secret#123 ")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_email_is_trimmed(self, client: TestClient, make_user, login) -> None:
        make_user()
        assert login(email="  member@example.com ").status_code == 200

    def test_unknown_email_gets_the_same_answer(self, client: TestClient, make_user, login) -> None:
        make_user()
        unknown = login(email="nobody@example.com")
        wrong = login(password="Wrong#9999")
        assert unknown.status_code == wrong.status_code == 400
        assert unknown.json() == wrong.json()

    def test_second_login_kills_first_session(self, client: TestClient, make_user, login) -> None:
        make_user()
        first = login().json()["refreshToken"]
        second = login().json()["refreshToken"]
        client.cookies.clear()
        assert _refresh_with(client, first).status_code == 400
        assert _refresh_with(client, second).status_code == 200

    def test_malformed_body_is_400_validation_error(self, client: TestClient) -> None:
        resp = client.post("/auth", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_is_rate_limited(self, client: TestClient) -> None:
        limiter.reset()
        limiter.enabled = True
        try:
            statuses = [
                client.post("/auth", json={"email": "nobody@example.com", "password": "x"}).status_code
                for _ in range(11)
            ]
        finally:
            limiter.enabled = False
            limiter.reset()
        assert statuses[:10] == [400] * 10
        assert statuses[10] == 429


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_rotates_only_access_cookie(self, client: TestClient, make_user, login, cookie_header) -> None:
        make_user()
        body = login().json()

        first = client.post("/auth/refresh")
        second = client.post("/auth/refresh")

        for resp in (first, second):
            assert resp.status_code == 200
            assert resp.json()["refreshToken"] == body["refreshToken"]
            assert cookie_header(resp, "accessToken")
            assert cookie_header(resp, "refreshToken") == ""
        assert client.cookies.get("refreshToken") == body["refreshToken"]

    def test_refreshed_access_token_authenticates(self, client: TestClient, make_user, login) -> None:
        user = make_user()
        login()
        access = client.post("/auth/refresh").json()["accessToken"]
        client.cookies.clear()
        resp = client.get("/users/me", headers={"Authorization": f"Bearer {access}"})
        assert resp.status_code == 200
        assert resp.json()["id"] == user.id

    def test_missing_cookie(self, client: TestClient) -> None:
        resp = client.post("/auth/refresh")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "missing_token"

    def test_garbage_cookie(self, client: TestClient) -> None:
        resp = _refresh_with(client, "garbage")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_expired_row_is_revoked(self, client: TestClient, make_user, stores) -> None:
        user = make_user()
        token = TokenIssuer.from_settings(settings).issue_refresh(user.id)
        stores.sessions.persist(user.id, token, datetime.now(timezone.utc) - timedelta(minutes=1))

        resp = _refresh_with(client, token)

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "token_expired"
        assert stores.sessions.get_by_token(token).revoked is True

    def test_refresh_after_logout_is_invalid(self, client: TestClient, make_user, login) -> None:
        make_user()
        token = login().json()["refreshToken"]
        assert client.delete("/auth").status_code == 200
        resp = _refresh_with(client, token)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_token"


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_clears_both_cookies(self, client: TestClient, make_user, login, stores, cookie_header) -> None:
        make_user()
        token = login().json()["refreshToken"]

        resp = client.delete("/auth")

        assert resp.status_code == 200
        for name in ("accessToken", "refreshToken"):
            header = cookie_header(resp, name)
            assert "Max-Age=0" in header
            assert "Path=/" in header
        assert stores.sessions.get_by_token(token).revoked is True

    def test_logout_without_session_still_succeeds(self, client: TestClient, cookie_header) -> None:
        resp = client.delete("/auth")
        assert resp.status_code == 200
        assert "Max-Age=0" in cookie_header(resp, "accessToken")
        assert "Max-Age=0" in cookie_header(resp, "refreshToken")

    def test_logout_with_expired_access_token_is_allowed(self, client: TestClient, make_user) -> None:
        user = make_user()
        past = TokenIssuer.from_settings(settings, clock=lambda: datetime.now(timezone.utc) - timedelta(hours=2))
        resp = client.delete("/auth", headers={"Authorization": f"Bearer {past.issue_access(user.id, 'USER')}"})
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    NEW = "Fresh#4567"

    def test_full_reset(self, client: TestClient, make_user, login, mailer, stores) -> None:
        make_user()
        old_refresh = login().json()["refreshToken"]

        assert client.post("/auth/password-reset", json={"email": "member@example.com"}).status_code == 200
        code = mailer.last_code()

        verify = client.post("/auth/password-reset/verify", json={"email": "member@example.com", "code": code})
        assert verify.json() == {"verified": True}

        resp = client.patch(
            "/auth/password-reset",
            json={"email": "member@example.com", "code": code, "newPassword": self.NEW, "confirmPassword": self.NEW},
        )
        assert resp.status_code == 200
        assert stores.sessions.find_active(old_refresh) is None
        assert login().status_code == 400
        assert login(password=self.NEW).status_code == 200

    def test_unknown_email_looks_identical(self, client: TestClient, make_user, mailer) -> None:
        make_user()
        known = client.post("/auth/password-reset", json={"email": "member@example.com"})
        unknown = client.post("/auth/password-reset", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert len(mailer.sent) == 1

    def test_wrong_code(self, client: TestClient, make_user, mailer) -> None:
        make_user()
        client.post("/auth/password-reset", json={"email": "member@example.com"})
        wrong = "000000" if mailer.last_code() != "000000" else "111111"
        verify = client.post("/auth/password-reset/verify", json={"email": "member@example.com", "code": wrong})
        assert verify.json() == {"verified": False}
        resp = client.patch(
            "/auth/password-reset",
            json={"email": "member@example.com", "code": wrong, "newPassword": self.NEW, "confirmPassword": self.NEW},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_code"

    def test_mismatched_confirmation(self, client: TestClient, make_user, mailer) -> None:
        make_user()
        client.post("/auth/password-reset", json={"email": "member@example.com"})
        resp = client.patch(
            "/auth/password-reset",
            json={
                "email": "member@example.com",
                "code": mailer.last_code(),
                "newPassword": self.NEW,
                "confirmPassword": "Other#4567",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_mismatch"

    def test_weak_new_password_is_validation_error(self, client: TestClient, make_user, mailer) -> None:
        make_user()
        client.post("/auth/password-reset", json={"email": "member@example.com"})
        resp = client.patch(
            "/auth/password-reset",
            json={
                "email": "member@example.com",
                "code": mailer.last_code(),
                "newPassword": "password",
                "confirmPassword": "password",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"
