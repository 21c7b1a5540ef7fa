"""
API request and response models for the community REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
content/models.py, which own the internal domain representation. Route
handlers map between the two.

Wire names are camelCase (rememberMe, accessToken, newPassword, ...). The
alias generator handles that; Python code uses snake_case and
populate_by_name lets tests build models either way.

Whitespace is stripped per field (Trimmed), never model-wide: password fields
reach the verifier exactly as typed.
"""

import re
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]+$"

# Letter, digit and special character; no whitespace; no character three
# times in a row. Needs lookaheads, so it runs in a validator rather than
# Field(pattern=...).
_PASSWORD_RE = re.compile(
    r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[!@#$%^&*()_+=\[\]{};':\"\\|,.<>/?-])(?!.*\s)(?!.*(.)\1{2,}).*$"
)
# Letters (Hangul included), digits and underscores; no leading, trailing or
# doubled underscore; not all digits.
_NICKNAME_RE = re.compile(r"^(?!_)(?!.*__)(?!.*_$)(?!\d+$)[가-힣a-zA-Z0-9_]+$")


# Emails, nicknames, codes and post text are trimmed; passwords never are.
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]


def _check_password_strength(value: str) -> str:
    if not _PASSWORD_RE.match(value):
        raise ValueError(
            "Password must contain a letter, a digit and a special character, "
            "no whitespace, and no character repeated three times in a row."
        )
    return value


def _check_nickname(value: str) -> str:
    if not _NICKNAME_RE.match(value):
        raise ValueError("Nickname may contain letters, digits and single inner underscores only.")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /auth.

    No strength check on password here: a wrong password of any shape is
    bad_credentials, not a validation error.
    """

    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False


class PasswordResetRequest(_CamelModel):
    """Request body for POST /auth/password-reset."""

    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)


class PasswordResetVerify(_CamelModel):
    """Request body for POST /auth/password-reset/verify."""

    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)
    code: Trimmed = Field(pattern=r"^\d{6}$")


class PasswordResetConfirm(_CamelModel):
    """Request body for PATCH /auth/password-reset."""

    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)
    code: Trimmed = Field(pattern=r"^\d{6}$")
    new_password: str = Field(min_length=8, max_length=255)
    confirm_password: str = Field(min_length=1, max_length=255)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    nickname: str
    role: str
    created_at: Optional[str] = None


class LoginResponse(_CamelModel):
    """Response for POST /auth. Tokens are also set as httpOnly cookies."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str
    user: UserResponse


class TokenResponse(_CamelModel):
    """Response for POST /auth/refresh. refresh_token is echoed unchanged."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str


class VerifyResponse(_CamelModel):
    verified: bool


class MessageResponse(_CamelModel):
    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    """Request body for POST /users."""

    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=255)
    nickname: Trimmed = Field(min_length=2, max_length=10)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("nickname")
    @classmethod
    def valid_nickname(cls, value: str) -> str:
        return _check_nickname(value)


class ProfileUpdateRequest(_CamelModel):
    """Request body for PATCH /users/me."""

    nickname: Trimmed = Field(min_length=2, max_length=10)

    @field_validator("nickname")
    @classmethod
    def valid_nickname(cls, value: str) -> str:
        return _check_nickname(value)


class PasswordChangeRequest(_CamelModel):
    """Request body for PATCH /users/me/password.

    The caller is already authenticated, so there is no current-password
    field; reusing the current password is rejected by the flow instead.
    """

    new_password: str = Field(min_length=8, max_length=255)
    confirm_password: str = Field(min_length=1, max_length=255)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class EmailCheckRequest(_CamelModel):
    email: Trimmed = Field(max_length=320, pattern=EMAIL_PATTERN)


class NicknameCheckRequest(_CamelModel):
    nickname: Trimmed = Field(min_length=1, max_length=10)


class AvailabilityResponse(_CamelModel):
    available: bool


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class PostCreate(_CamelModel):
    """Request body for POST /posts."""

    title: Trimmed = Field(min_length=1, max_length=26)
    body: Trimmed = Field(min_length=1, max_length=10_000)


class PostResponse(_CamelModel):
    """A post as the requesting viewer sees it. liked is False for anonymous viewers."""

    id: int
    author_id: int
    title: str
    body: str
    created_at: str
    like_count: int
    liked: bool


class PostListResponse(_CamelModel):
    items: list[PostResponse]
    next_cursor: Optional[int] = None


class LikeResponse(_CamelModel):
    post_id: int
    like_count: int
    liked: bool


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
