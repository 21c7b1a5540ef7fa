"""
api/routes/auth.py -- Login, refresh, logout and password reset endpoints.

Routes:
  POST   /auth                         -- email/password login; sets token cookies
  POST   /auth/refresh                 -- new access token from the refreshToken cookie
  DELETE /auth                         -- revoke the refresh token; clear both cookies
  POST   /auth/password-reset          -- mail a reset code (always 200)
  POST   /auth/password-reset/verify   -- check a reset code without consuming it
  PATCH  /auth/password-reset          -- set a new password with a valid code

Every route here is BYPASS in auth/policy.py: none of them needs an
authenticated identity, and login/refresh must work precisely when the
caller does not have one.

Failures are raised as AuthError subclasses and rendered by the handler in
api/main.py. Handlers never build error responses themselves.

Security:
  [H2] POST /auth is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] AuthFlow.authenticate() equalizes timing for unknown emails.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from fastapi import APIRouter, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordResetVerify,
    TokenResponse,
    UserResponse,
    VerifyResponse,
)
from auth.flow import AuthFlow
from auth.models import Identity, User
from auth.password_reset import PasswordResetFlow
from auth.tokens import REFRESH_COOKIE

router = APIRouter()


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        nickname=user.nickname,
        role=user.role,
        created_at=user.created_at,
    )


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


@router.post("/auth", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2]
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate and start a new session, ending every earlier one.

    The refresh cookie is a session cookie unless rememberMe is true, in
    which case it lives for the refresh TTL.
    """
    flow: AuthFlow = request.app.state.auth_flow
    result = flow.login(body.email, body.password, body.remember_me, response)
    request.app.state.authenticator.remember(
        request, Identity(user_id=result.user.id, role=result.user.role), result.session_id
    )
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        user=user_response(result.user),
    )


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response) -> TokenResponse:
    """Mint a new access token. The refresh token and its cookie are left as they are."""
    flow: AuthFlow = request.app.state.auth_flow
    result = flow.refresh(request.cookies.get(REFRESH_COOKIE), response)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse(access_token=result.access_token, refresh_token=result.refresh_token)


@router.delete("/auth", response_model=MessageResponse)
def logout(request: Request, response: Response) -> MessageResponse:
    """Revoke the presented refresh token if any. Always clears both cookies."""
    flow: AuthFlow = request.app.state.auth_flow
    flow.logout(request.cookies.get(REFRESH_COOKIE), response)
    request.app.state.authenticator.forget(request)
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/password-reset", response_model=MessageResponse)
def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Send a reset code if the account exists. The answer is the same either way."""
    reset: PasswordResetFlow = request.app.state.password_reset
    reset.request_code(body.email)
    return MessageResponse(message="If the account exists, a verification code has been sent.")


@router.post("/auth/password-reset/verify", response_model=VerifyResponse)
def verify_password_reset(request: Request, body: PasswordResetVerify) -> VerifyResponse:
    reset: PasswordResetFlow = request.app.state.password_reset
    return VerifyResponse(verified=reset.verify_code(body.email, body.code))


@router.patch("/auth/password-reset", response_model=MessageResponse)
def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    """Set a new password. Every existing session of the account is revoked."""
    reset: PasswordResetFlow = request.app.state.password_reset
    reset.reset_password(body.email, body.code, body.new_password, body.confirm_password)
    return MessageResponse(message="Password has been reset.")
