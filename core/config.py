"""
core/config.py -- Gatehouse settings (pydantic-settings).

Every environment read happens here. Assembly code (api/main.py, main.py)
calls get_settings() once and hands the Settings instance to the stores and
services it builds; nothing below the assembly layer reads a global.

Field names map to environment variables (access_token_expire_seconds ->
ACCESS_TOKEN_EXPIRE_SECONDS); a .env file in the working directory is read
too. Token lifetimes are plain integers in the unit their name carries.

Security notes:
  [M6] SECRET_KEY signs access tokens and keys the HMAC over refresh and
       blacklisted tokens. Keys shorter than 32 chars are rejected.

  [M7] Without DEBUG=true a missing SECRET_KEY is a startup failure. With it,
       a random key is generated and every token dies with the process.

Layer rule: core/ may not import from api/, auth/, rbac/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///gatehouse.db"

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = 900
    refresh_token_expire_days: int = 7
    email_verification_expire_hours: int = 24
    password_reset_expire_hours: int = 1
    bcrypt_rounds: int = 12
    inactive_session_retention_days: int = 30

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    revocation_cache_size: int = 10000
    sweep_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # RBAC
    # ------------------------------------------------------------------

    rbac_enabled: bool = True
    seed_on_startup: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_days <= 0:
            raise ValueError("Token lifetimes must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly.
    """
    return Settings()
