"""
tests/conftest.py -- Shared test fixtures for the community integration tests.

This module provides:
  - make_stores(): isolated in-memory DBs for users, sessions and posts
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - RecordingMailer: captures reset codes instead of sending mail
  - client / session_client: TestClient over the full ASGI app (API + web pages),
    in token and session auth mode respectively
  - make_user, login, cookie_header: small helpers shared by the suites

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/auth/core import so
get_settings() auto-generates JWT_SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate JWT_SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import build_services, settings
from asgi import app
from auth.models import User
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore
from content.store import PostStore

PASSWORD = "Secret#123"

# Rate limiting has its own test; everywhere else it would make results
# depend on how many logins ran before.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class Stores:
    users: UserStore
    sessions: SessionStore
    posts: PostStore

    def close(self) -> None:
        self.posts.close()
        self.sessions.close()
        self.users.close()


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def make_stores() -> Stores:
    """Create stores over one fresh named shared-memory database.

    The random suffix keeps every test's data separate even though the
    databases live in the same process.
    """
    url = memory_url(f"test_community_{uuid.uuid4().hex}")
    return Stores(users=UserStore(url), sessions=SessionStore(url), posts=PostStore(url))


@dataclass
class RecordingMailer:
    """Stands in for auth.mailer.Mailer; keeps every code it was asked to send."""

    sent: list[tuple[str, str]] = field(default_factory=list)
    fail: bool = False

    def send_reset_code(self, to_email: str, code: str, ttl_seconds: int) -> bool:
        self.sent.append((to_email, code))
        return not self.fail

    def last_code(self) -> str:
        return self.sent[-1][1]


def _patch_lifespan(stores: Stores, mailer: RecordingMailer, test_settings=settings):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, test_settings, stores.users, stores.sessions, stores.posts, mailer=mailer)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    s = make_stores()
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def make_user(stores: Stores) -> Callable[..., User]:
    """Create a user with PASSWORD and return it as stored."""

    def _make(email: str = "member@example.com", nickname: str = "member", role: str = "USER") -> User:
        uid = stores.users.create_user(
            User(email=email, nickname=nickname, hashed_password=hash_password(PASSWORD), role=role)
        )
        return stores.users.get_by_id(uid)

    return _make


@pytest.fixture
def client(stores: Stores, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """TestClient over the full app with isolated stores.

    follow_redirects=False so tests can assert on the 302 to /login.
    """
    app.router.lifespan_context = _patch_lifespan(stores, mailer)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def login(client: TestClient) -> Callable[..., object]:
    """POST /auth with the default member's credentials unless told otherwise."""

    def _login(email: str = "member@example.com", password: str = PASSWORD, remember_me: bool = False):
        return client.post("/auth", json={"email": email, "password": password, "rememberMe": remember_me})

    return _login


@pytest.fixture
def cookie_header() -> Callable[..., str]:
    """Return the Set-Cookie header a response sent for one cookie, or ""."""

    def _find(resp, name: str) -> str:
        for header in resp.headers.get_list("set-cookie"):
            if header.startswith(f"{name}="):
                return header
        return ""

    return _find


@pytest.fixture
def session_client(stores: Stores, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """Like client, but with AUTH_MODE=session wired into the request gate."""
    session_settings = settings.model_copy(update={"auth_mode": "session"})
    app.router.lifespan_context = _patch_lifespan(stores, mailer, session_settings)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c
