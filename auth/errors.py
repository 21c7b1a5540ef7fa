"""
auth/errors.py -- Typed failures raised by the identity core.

Each failure carries the HTTP status, a machine-readable code and a
user-facing message. api/main.py maps them 1:1 onto the error envelope.

Messages are deliberately generic. Unknown email and wrong password share
one message; revoked and never-issued refresh tokens share another. Callers
must not add detail that tells the two cases apart.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    message = "Invalid email or password."


class MissingToken(AuthError):
    code = "missing_token"
    message = "Refresh token is missing."


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid token."


class InvalidSignature(InvalidToken):
    """Token decoded but its signature does not match the signing key."""


class MalformedToken(InvalidToken):
    """Token structure or claims could not be decoded."""


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired."


class ResetCodeInvalid(AuthError):
    code = "invalid_code"
    message = "Verification code is invalid or has expired."


class PasswordMismatch(AuthError):
    code = "password_mismatch"
    message = "Passwords do not match."


class PasswordReused(AuthError):
    code = "password_reused"
    message = "New password must differ from the current one."
