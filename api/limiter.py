"""
api/limiter.py -- The process-wide slowapi Limiter.

api/main.py registers it on app.state and mounts SlowAPIMiddleware;
api/routes/auth.py decorates POST /auth with it. Both must see the same
object, since counters live in that instance's memory:// storage.

Limits are keyed by client IP. Behind a reverse proxy that means the proxy
address unless uvicorn runs with --proxy-headers.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """LOGIN_RATE_LIMIT, resolved per request so tests and restarts pick up changes."""
    return get_settings().login_rate_limit
