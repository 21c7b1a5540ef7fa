"""
web/routes.py -- Jinja2 template routes for the community web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores) but return HTML instead of JSON.

"/" and "/index" are STRICT in auth/policy.py and listed as redirect paths:
an anonymous visitor never reaches the handler, the request gate sends a
302 to /login instead. The other pages are BYPASS.

Routes:
  GET  /          -- home page (auth required)
  GET  /index     -- same page
  GET  /login     -- login form; the form posts to POST /auth from the browser
  GET  /terms     -- terms of service
  GET  /privacy   -- privacy policy
  GET  /error     -- generic error page
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_identity
from auth.store import UserStore

logger = logging.getLogger("community.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping for ?error= query params on /login and /error [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "session_expired": "Your session has expired. Please log in again.",
    "not_found": "The page you are looking for does not exist.",
    "forbidden": "You do not have access to this page.",
}
_DEFAULT_ERROR = "Something went wrong. Please try again."


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative ones ("//attacker.com"),
    either of which would send the user off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
@router.get("/index", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    identity = try_get_identity(request)
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(identity.user_id) if identity is not None else None
    if identity is not None and user is None:
        logger.info("Home page for withdrawn or missing user_id=%s", identity.user_id)
    return templates.TemplateResponse(request, "index.html", {"user": user})


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request, error: Optional[str] = None, next: Optional[str] = None) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_message": _ERROR_MESSAGES.get(error) if error else None,
            "next_url": _safe_next(next),
        },
    )


@router.get("/terms", response_class=HTMLResponse)
def terms(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "terms.html", {})


@router.get("/privacy", response_class=HTMLResponse)
def privacy(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "privacy.html", {})


@router.get("/error", response_class=HTMLResponse)
def error_page(request: Request, code: Optional[str] = None) -> HTMLResponse:
    message = _ERROR_MESSAGES.get(code, _DEFAULT_ERROR) if code else _DEFAULT_ERROR
    return templates.TemplateResponse(request, "error.html", {"error_message": message})
