"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keyward happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Used for the DEBUG-conditional SECRET_KEY rule.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Session tokens
       are stored as HMAC-SHA256(SECRET_KEY, token); a short key weakens that.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would orphan every
       stored session digest on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'keyward.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Applied to pool checkout and to SQLite's busy timeout so no store call
    # waits forever on a locked database.
    db_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # Sessions and login
    # ------------------------------------------------------------------

    session_lifetime_days: int = Field(default=1000, ge=1)
    secure_cookies: bool = True
    max_login_attempts: int = Field(default=5, ge=1)
    login_rate_limit: str = "10/minute"
    reaper_interval_seconds: float = Field(default=60.0, gt=0)

    # ------------------------------------------------------------------
    # Verification codes and email
    # ------------------------------------------------------------------

    code_ttl_hours: int = Field(default=24, ge=1)
    mail_from: str = "registration@tld.com"
    # Empty SMTP host = dev mode: messages are logged, not sent.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Google identity tokens (empty client ID disables Google login)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_certs_url: str = "https://www.googleapis.com/oauth2/v3/certs"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    @property
    def session_lifetime_seconds(self) -> int:
        return self.session_lifetime_days * 24 * 60 * 60

    @property
    def code_ttl_seconds(self) -> int:
        return self.code_ttl_hours * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Stored sessions will not validate after a restart.

        Production mode: refuse to start without SECRET_KEY.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
