"""
api/main.py -- FastAPI application entry point for the community platform.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed server-side session (AUTH_MODE=session)
  5. log_requests          -- one access log line per request
  6. authenticate_request  -- RoutePolicy + Authenticator; binds the identity

Lifespan builds every service once (stores, TokenIssuer, AuthFlow,
PasswordResetFlow, the authenticator and the request gate) and closes the
stores on shutdown. Handlers reach them through request.app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.posts import router as posts_router
from api.routes.users import router as users_router
from auth.authenticators import build_authenticator
from auth.errors import AuthError
from auth.flow import AuthFlow
from auth.mailer import Mailer
from auth.middleware import RequestAuthenticator
from auth.password_reset import CodeSender, PasswordResetFlow
from auth.policy import RoutePolicy
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenIssuer
from content.store import PostStore
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("community.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_services(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    session_store: SessionStore,
    post_store: PostStore,
    mailer: Optional[CodeSender] = None,
) -> None:
    """Attach every request-time service to app.state.

    Split out of lifespan so tests can wire in-memory stores and a recording
    mailer without touching the real database.
    """
    issuer = TokenIssuer.from_settings(settings)
    authenticator = build_authenticator(settings, issuer, session_store)
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.post_store = post_store
    app.state.token_issuer = issuer
    app.state.authenticator = authenticator
    app.state.request_authenticator = RequestAuthenticator(
        authenticator,
        RoutePolicy.from_settings(settings),
        login_page_path=settings.login_page_path,
    )
    app.state.auth_flow = AuthFlow(
        user_store,
        session_store,
        issuer,
        secure_cookies=settings.secure_cookies,
    )
    app.state.password_reset = PasswordResetFlow(
        user_store,
        session_store,
        mailer if mailer is not None else Mailer.from_settings(settings),
        code_ttl_seconds=settings.password_reset_code_ttl_seconds,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and close them on shutdown.

    All three stores share one database URL; each creates its own tables.
    """
    logger.info("Community API starting up (auth_mode=%s)", settings.auth_mode)
    build_services(
        app,
        settings,
        UserStore(settings.database_url),
        SessionStore(settings.database_url),
        PostStore(settings.database_url),
    )
    logger.info("Stores initialized")

    yield

    app.state.post_store.close()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("Community API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Community API",
    description="Identity, sessions and posts for the community platform.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST one
# registered is the outermost. Registration below therefore runs innermost
# first: authenticate_request, log_requests, Session, SlowAPI, CORS,
# TrustedHost.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def authenticate_request(request: Request, call_next):
    """Classify the route, authenticate, bind request.state.identity or reject.

    Rejections are responses (302 to the login page or JSON 401), never
    exceptions, so they pass back out through the logging middleware.
    """
    gate: RequestAuthenticator = request.app.state.request_authenticator
    return await gate.dispatch(request, call_next)


# Pattern: Interceptor / Chain of Responsibility. Wall-clock time is taken
# around call_next so every response, rejected or not, reports latency.
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret_key,
    https_only=settings.secure_cookies,
    same_site="lax",
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
app.include_router(posts_router, tags=["Posts"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a typed identity failure. The message is generic by construction."""
    response = _error(exc.status_code, exc.code, exc.message)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler without awaiting it.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body or query fails validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. BYPASS in auth/policy.py and not
# rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a per-component database check."""
    components: dict[str, str] = {}
    for name in ("user_store", "session_store", "post_store"):
        store = getattr(request.app.state, name, None)
        if store is None:
            components[name] = "unavailable"
            continue
        try:
            with store.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            components[name] = "ok"
        except SQLAlchemyError:
            logger.exception("Health check failed for %s", name)
            components[name] = "error"
    status = "ok" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
