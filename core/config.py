"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly. The lifespan in api/main.py calls get_settings()
once and hands the resulting object to every service constructor; auth/ never
reads settings at import time.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): dev mode (DEBUG=true) generates a random
      SECRET_KEY with a warning, production mode refuses to start without one.

Degraded mode:
  mail_configured is False unless host, user, password and sender are all set.
  AccountService then skips email verification entirely and new accounts are
  created verified.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("summarizer.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'summarizer_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true still required for the
    secret key).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Public base URL of the dashboard. Verification and reset links point here.
    app_url: str = "http://localhost:5000"
    cors_origins: list[str] = ["http://localhost:5000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_ttl_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    # Granted the admin role the first time an account is created for it.
    bootstrap_admin_email: str = ""

    # ------------------------------------------------------------------
    # Outbound mail (optional -- all four of host/user/password/from enable it)
    # ------------------------------------------------------------------

    email_host: str = ""
    email_port: int = 587
    email_user: str = Field(default="", validation_alias=AliasChoices("EMAIL_USER", "SMTP_USER", "email_user"))
    email_password: str = Field(
        default="", validation_alias=AliasChoices("EMAIL_PASSWORD", "SMTP_PASS", "email_password")
    )
    email_from: str = ""
    # True = implicit TLS (port 465). False = STARTTLS when the server offers it.
    email_secure: bool = False

    # ------------------------------------------------------------------
    # Microsoft SSO (optional -- empty client id/secret disables it)
    # ------------------------------------------------------------------

    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    microsoft_tenant_id: str = "common"
    microsoft_redirect_uri: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def mail_configured(self) -> bool:
        return bool(self.email_host and self.email_user and self.email_password and self.email_from)

    @property
    def sso_configured(self) -> bool:
        return bool(self.microsoft_client_id and self.microsoft_client_secret)

    @property
    def normalized_bootstrap_admin_email(self) -> str:
        return self.bootstrap_admin_email.strip().lower()

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Session cookies signed for OAuth state will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Signed cookies will not persist across restarts.")
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

    In tests: construct Settings(...) directly for service-level tests, or call
    get_settings.cache_clear() after changing environment variables.
    """
    return Settings()
