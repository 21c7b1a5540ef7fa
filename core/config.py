"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. jwt_secret_key -> JWT_SECRET_KEY).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Implements the DEBUG-conditional signing key policy.

Security notes:
  [M6] JWT_SECRET_KEY is base64. It must decode to at least 32 raw bytes;
       HS256 signing strength is bounded by key entropy.

  [M7] Outside debug mode a missing JWT_SECRET_KEY is a hard startup failure.
       A random per-process key would silently log everyone out on restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or content/.
"""

import base64
import binascii
import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("community.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'community.db'}"

_MIN_KEY_BYTES = 32


def decode_secret_key(encoded: str) -> bytes:
    """Decode a base64 signing key. Raises ValueError if it is not valid base64."""
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("JWT_SECRET_KEY must be base64 encoded.") from exc


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field has a default so Settings() can be built in tests without a
    real .env file. The model_validator enforces the signing key policy.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator
    # either generates a dev key or raises, so callers never see "".
    jwt_secret_key: str = ""
    access_token_ttl_seconds: int = 1800
    refresh_token_ttl_seconds: int = 14 * 24 * 60 * 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    # "token": bearer header / accessToken cookie verified per request.
    # "session": identity read from the signed server-side session cookie.
    auth_mode: Literal["token", "session"] = "token"
    session_secret_key: str = ""
    # Extra path prefixes that skip authentication entirely.
    public_paths: list[str] = []
    login_page_path: str = "/login"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Password reset and mail
    # ------------------------------------------------------------------

    password_reset_code_ttl_seconds: int = 300
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the JWT_SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart.

        Production mode: refuse to start without a configured key.

        Both modes: the key must be base64 and decode to >= 32 bytes [M6].
        """
        if not self.jwt_secret_key:
            if self.debug:
                self.jwt_secret_key = base64.b64encode(secrets.token_bytes(_MIN_KEY_BYTES)).decode("ascii")
                logger.warning("WARNING: Using auto-generated JWT_SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "JWT_SECRET_KEY is required in production mode. "
                    "Set JWT_SECRET_KEY (base64) in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(decode_secret_key(self.jwt_secret_key)) < _MIN_KEY_BYTES:
            raise ValueError(f"JWT_SECRET_KEY must decode to at least {_MIN_KEY_BYTES} bytes.")
        if not self.session_secret_key:
            self.session_secret_key = self.jwt_secret_key
        if self.access_token_ttl_seconds <= 0 or self.refresh_token_ttl_seconds <= 0:
            raise ValueError("Token TTLs must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
