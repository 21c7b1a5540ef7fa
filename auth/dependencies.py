"""
auth/dependencies.py -- FastAPI Depends() helpers for reading the bound identity.

The request gate (auth/middleware.py) has already authenticated the request
by the time a handler runs. These helpers only read what it bound on
request.state.identity; they never verify a token themselves.

try_get_identity() is the soft variant (returns None when nothing is bound).
get_identity() raises HTTP 401 when nothing is bound.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity


def try_get_identity(request: Request) -> Identity | None:
    """Return the bound Identity, or None for anonymous requests. Never raises."""
    return getattr(request.state, "identity", None)


def get_identity(request: Request) -> Identity:
    """Require a bound identity. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity
