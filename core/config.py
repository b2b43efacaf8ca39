"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LearnDeck happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. JWT signing
       relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure. So is a missing RESEND_API_KEY: the mailer's
       log-the-link fallback is for development only.

  [M8] ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ. A refresh
       token must never verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("learndeck.config")

_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "session_secret_key")


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
    database_url: str = ""  # empty = SQLite file next to auth/schema.py
    # Front-end origin; verification links and OAuth redirects point here.
    client_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    session_secret_key: str = ""  # authlib OAuth state (SessionMiddleware)

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    verification_token_expire_seconds: int = 15 * 60
    token_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Passwords / cookies
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 10
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Outbound email (Resend). Empty key = log the link instead of sending.
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    email_from: str = "LearnDeck <onboarding@resend.dev>"

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any secret or RESEND_API_KEY is missing.

        Both modes: reject secrets shorter than 32 characters, and reject an
            access secret that equals the refresh secret.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, name, value)
                logger.warning("WARNING: Using auto-generated %s. Sessions will not persist across restarts.", name.upper())
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be different.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if not self.debug and not self.resend_api_key:
            raise ValueError(
                "RESEND_API_KEY is required in production mode. "
                "Without it no verification email can be delivered."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
