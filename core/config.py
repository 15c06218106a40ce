"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for FitCoach happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Implements the DEBUG-conditional JWT_SECRET policy: debug mode
      generates a key with a warning, production refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("fitcoach.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'fitcoach.db'}"


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # "development" enables error detail disclosure; "test" disables outbound email.
    environment: Literal["development", "production", "test"] = "production"
    database_url: str = _DEFAULT_DB_URL
    frontend_base_url: str = "http://localhost:5173"
    cors_origins: str = "http://localhost:5173"
    allowed_hosts: str = "*"

    # ------------------------------------------------------------------
    # Tokens and passwords
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_secret: str = ""
    # Falls back to jwt_secret when empty.
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600
    reset_token_expire_seconds: int = 3600
    invite_expire_days: int = 7
    bcrypt_rounds: int = 12

    # Comma-separated allowlist; matching emails register as ADMIN.
    admin_emails: str = ""

    # ------------------------------------------------------------------
    # Email (SMTP). Empty host means delivery is skipped with a warning.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = "no-reply@fitcoach.local"
    smtp_starttls: bool = True

    # ------------------------------------------------------------------
    # reCAPTCHA v3. Empty secret disables the check.
    # ------------------------------------------------------------------

    recaptcha_secret_key: str = ""
    recaptcha_min_score: float = 0.5

    # ------------------------------------------------------------------
    # Rate limiting (limits string syntax, per client IP)
    # ------------------------------------------------------------------

    auth_rate_limit: str = "5 per 15 minutes"
    password_reset_rate_limit: str = "3 per hour"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def refresh_secret(self) -> str:
        return self.jwt_refresh_secret or self.jwt_secret

    @property
    def admin_email_set(self) -> frozenset[str]:
        return frozenset(e.lower() for e in _split_csv(self.admin_emails))

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    @property
    def allowed_host_list(self) -> list[str]:
        return _split_csv(self.allowed_hosts) or ["*"]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secrets(self) -> "Settings":
        """Enforce the JWT_SECRET policy.

        Debug mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if JWT_SECRET is missing.

        Both modes: reject secrets shorter than 32 characters, including an
            explicitly configured JWT_REFRESH_SECRET.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated JWT_SECRET. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if self.jwt_refresh_secret and len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT_REFRESH_SECRET must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
