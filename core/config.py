"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authapi happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_key -> JWT_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Security notes:
  JWT_KEY shorter than 32 chars is rejected outright. HS256 signing needs a
  key of at least 256 bits.

  In production mode (DEBUG not set or false), a missing JWT_KEY is a hard
  startup failure. Tokens are never issued unsigned.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authapi.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authapi.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except jwt_key have usable defaults so Settings() can be
    instantiated in test environments with DEBUG=true and nothing else.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Token issuance
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises.
    jwt_key: str = ""
    jwt_issuer: str = "authapi"
    jwt_audience: str = "authapi-clients"
    token_expire_hours: int = 3
    # Tolerance applied to exp when validating incoming bearer tokens.
    clock_skew_seconds: int = 300

    # ------------------------------------------------------------------
    # Password policy (enforced by the identity store on user creation)
    # ------------------------------------------------------------------

    password_min_length: int = 6
    password_require_digit: bool = True
    password_require_lowercase: bool = True
    password_require_uppercase: bool = True
    password_require_non_alphanumeric: bool = True
    password_required_unique_chars: int = 1

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_key(self) -> "Settings":
        """Enforce the JWT_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if JWT_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_key:
            if self.debug:
                self.jwt_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated JWT_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "JWT_KEY is required in production mode. "
                    "Set JWT_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_key) < 32:
            raise ValueError("JWT_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
