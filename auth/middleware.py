"""
auth/middleware.py -- Per-request authentication gate.

For one request:

  START -> classify (RoutePolicy)
        -> BYPASS: continue, no identity
        -> SOFT:   authenticate; bind identity if valid; continue either way
        -> STRICT: authenticate; bind and continue if valid, else reject

Rejection is always a direct response, never an exception: a 302 to the
login page for the navigational paths ("/", "/index"), a JSON 401 for
everything else. Handlers read the bound identity from request.state.identity
(see auth/dependencies.py) and never re-verify.

The gate holds no per-request state and takes no locks, so it is shared by
every concurrent request. Authentication runs in the threadpool because the
session strategy does a database lookup.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from auth.authenticators import AuthOutcome, AuthState, Authenticator
from auth.policy import Access, RoutePolicy

logger = logging.getLogger("community.auth")

UNAUTHORIZED_BODY = {"error": {"code": "unauthorized", "message": "Authentication required."}}


class RequestAuthenticator:
    """Classify, authenticate, bind or reject.

    Usage (api/main.py):
        @app.middleware("http")
        async def authenticate_request(request, call_next):
            return await request.app.state.request_authenticator.dispatch(request, call_next)
    """

    def __init__(self, authenticator: Authenticator, policy: RoutePolicy, login_page_path: str = "/login") -> None:
        self.authenticator = authenticator
        self.policy = policy
        self.login_page_path = login_page_path

    def decide(self, request: Request) -> tuple[Access, AuthOutcome]:
        """Return the access level and the authentication outcome for a request."""
        access = self.policy.classify(request.method, request.url.path)
        if access is Access.BYPASS:
            return access, AuthOutcome(AuthState.BYPASSED)
        return access, self.authenticator.authenticate(request)

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.identity = None
        # The session strategy reads the database; keep that off the event loop.
        access, outcome = await run_in_threadpool(self.decide, request)

        if outcome.state is AuthState.TOKEN_VALID:
            request.state.identity = outcome.identity
            return await call_next(request)

        if access is not Access.STRICT:
            return await call_next(request)

        logger.info(
            "Rejected %s %s (%s%s)",
            request.method,
            request.url.path,
            outcome.state.value,
            f": {outcome.reason}" if outcome.reason else "",
        )
        return self.reject(request)

    def reject(self, request: Request) -> Response:
        if self.policy.redirects_on_reject(request.url.path):
            return RedirectResponse(self.login_page_path, status_code=302)
        return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
