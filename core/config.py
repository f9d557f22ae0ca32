"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly. Core components never look configuration up themselves: the API
lifespan and the CLI call get_settings() once and pass the Settings object (or
values taken from it) into each component's constructor.

Design patterns used:
  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Singleton via lru_cache: get_settings() instantiates Settings once. Only the
      assembly points (api/main.py lifespan, main.py CLI) may call it.

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY policy. Dev
      mode generates a key with a warning, production refuses to start.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HS256 token signing
  relies on key entropy -- a short key weakens every token kind at once.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identityrbac.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity_rbac.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except SECRET_KEY have usable defaults so Settings(secret_key=...)
    works in tests without a .env file.
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
    service_name: str = "identity-rbac"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    access_token_ttl_minutes: int = 15
    refresh_token_ttl_minutes: int = 7 * 24 * 60
    email_invitation_ttl_minutes: int = 24 * 60
    bcrypt_rounds: int = 12
    request_timeout_seconds: float = 10.0
    session_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Onboarding mail
    # ------------------------------------------------------------------

    # The invitation token is appended as ?token=<jwt>
    invitation_url: str = "http://localhost:3000/register"
    mail_host: str = ""
    mail_port: int = 587
    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = "no-reply@localhost"
    mail_use_tls: bool = True

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator(
        "access_token_ttl_minutes",
        "refresh_token_ttl_minutes",
        "email_invitation_ttl_minutes",
        "session_purge_interval_seconds",
    )
    @classmethod
    def positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number")
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def bcrypt_cost_range(cls, value: int) -> int:
        # bcrypt.gensalt accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive restarts.")
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

    Call only from assembly code (api/main.py, main.py). In tests, construct
    Settings(...) directly or call get_settings.cache_clear().
    """
    return Settings()
