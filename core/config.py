"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for StockFolio happen here. No module should
call os.getenv() or os.environ.get() directly. Components (hasher, token
issuer, session manager, caches) receive a Settings instance at construction;
only the application edge (api/main.py) calls get_settings().

Secret policy:
  Access and refresh tokens are signed with two different secrets so that a
  leaked access secret cannot mint refresh tokens, and vice versa. Both are
  required outside DEBUG mode, both must be at least 32 characters, and they
  must not be equal.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("stockfolio.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'stockfolio_auth.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    tests without a real .env file. Field names map to upper-cased env vars
    (jwt_secret -> JWT_SECRET, cache_ttl_quotes -> CACHE_TTL_QUOTES).
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

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the validator below
    # either generates a dev secret or raises.
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    reset_token_expire_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Tests drop to 4 to keep the suite fast.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    # Empty string disables the shared tier; the local tier still works.
    redis_url: str = ""
    redis_socket_timeout: float = 5.0
    cache_ttl_quotes: int = 60
    cache_ttl_search: int = 120
    cache_ttl_movers: int = 300
    cache_purge_interval_seconds: int = 600

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    auth_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Dev mode (DEBUG=true): missing secrets are generated with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret.
        """
        for field_name in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, field_name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field_name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field_name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", field_name.upper())

        for field_name in ("jwt_secret", "jwt_refresh_secret"):
            if len(getattr(self, field_name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{field_name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between cases that need
    different environment variables, or construct Settings(...) directly.
    """
    return Settings()
