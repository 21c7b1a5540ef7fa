"""
auth/tokens.py -- Signed token issuance/verification and token cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. One symmetric key, decoded from its base64
       configuration once when the issuer is built. Access tokens carry
       sub/role/typ/iat/exp; refresh tokens carry sub/typ/jti/iat/exp. The
       random jti keeps two refresh tokens for the same user distinct even
       when issued in the same second.

  Verification: raises a typed failure instead of returning None so the
       refresh flow can tell "expired" apart from "forged or garbage". The
       request gate collapses every failure into a single 401.

  Purity: TokenIssuer never touches storage. It is a function of its key,
       its clock and the input string, so it is shared across requests with
       no locking.

Layer rule: no imports from api/, web/, or content/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import InvalidSignature, MalformedToken, TokenExpired
from auth.models import TokenClaims
from core.config import decode_secret_key

if TYPE_CHECKING:
    from starlette.responses import Response

    from core.config import Settings

logger = logging.getLogger("community.auth")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Stateless signer/verifier for access and refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_access(42, "USER")
        claims = issuer.verify(token)   # raises on failure
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._key: bytes = decode_secret_key(secret_key)
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> TokenIssuer:
        return cls(
            settings.jwt_secret_key,
            settings.access_token_ttl_seconds,
            settings.refresh_token_ttl_seconds,
            clock=clock,
        )

    def _sign(self, claims: dict, ttl: timedelta) -> str:
        now = self._clock()
        payload = dict(claims)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + ttl).timestamp())
        return jwt.encode(payload, self._key, algorithm=_ALGORITHM)

    def issue_access(self, user_id: int, role: str) -> str:
        """Sign a short-lived access token for (user_id, role)."""
        return self._sign({"sub": str(user_id), "role": role, "typ": ACCESS_TOKEN_TYPE}, self.access_ttl)

    def issue_refresh(self, user_id: int) -> str:
        """Sign a long-lived refresh token with a random unique jti."""
        return self._sign(
            {"sub": str(user_id), "typ": REFRESH_TOKEN_TYPE, "jti": uuid.uuid4().hex},
            self.refresh_ttl,
        )

    def refresh_expiry(self) -> datetime:
        """Return the store-side expiry for a refresh token issued now."""
        return self._clock() + self.refresh_ttl

    def verify(self, token: str) -> TokenClaims:
        """Verify signature and expiry and return the token's claims.

        Raises:
            MalformedToken:   the string is not a decodable JWT, or required
                              claims are missing or mistyped.
            InvalidSignature: the signature does not match this issuer's key
                              (or the algorithm is not HS256).
            TokenExpired:     now > exp, where now comes from the issuer clock.
        """
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc

        try:
            # exp is checked below against self._clock, the same clock that
            # stamped iat/exp at issue time.
            payload = jwt.decode(token, self._key, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTClaimsError as exc:
            # python-jose checks the signature before any claim, so a claim
            # error here means the token is authentic but unusable.
            raise MalformedToken() from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        claims = _claims_from_payload(payload)
        if self._clock() > claims.expires_at:
            raise TokenExpired()
        return claims


def _claims_from_payload(payload: dict) -> TokenClaims:
    token_type = payload.get("typ")
    if token_type not in (ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE):
        raise MalformedToken()
    try:
        subject = int(payload["sub"])
        issued_at = _from_timestamp(payload["iat"])
        expires_at = _from_timestamp(payload["exp"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedToken() from exc
    role = payload.get("role")
    if token_type == ACCESS_TOKEN_TYPE and not role:
        raise MalformedToken()
    return TokenClaims(
        subject=subject,
        type=token_type,
        issued_at=issued_at,
        expires_at=expires_at,
        role=role,
        token_id=payload.get("jti"),
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_token_cookie(response: Response, name: str, token: str, max_age: int | None, secure: bool = False) -> None:
    """Write a token as an httpOnly cookie scoped to path "/".

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age=None: session cookie, dropped when the browser closes.
    """
    response.set_cookie(
        name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_token_cookie(response: Response, name: str, secure: bool = False) -> None:
    """Expire a token cookie immediately (empty value, max-age 0)."""
    response.set_cookie(
        name,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
