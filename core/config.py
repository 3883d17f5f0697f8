"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for NoPass happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. encryption_key -> ENCRYPTION_KEY). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode (DEBUG=true) generates missing
      secrets with a warning; production mode refuses to start without them.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the session middleware both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY or
       ENCRYPTION_KEY is a hard startup failure. A random ENCRYPTION_KEY in
       production would make every stored secret unreadable after a restart.

  ENCRYPTION_KEY must be exactly 64 hex characters (256 bits). There is no key
       version in the stored envelope, so changing the key invalidates all
       previously encrypted records.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or vault/.
"""

import logging
import secrets
import string
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("nopass.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'nopass.db'}"


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    encryption_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # Public URL of the web app (reset links, OAuth callbacks, redirect checks)
    app_base_url: str = "http://localhost:3000"
    # Public URL the mobile app reaches the API on. Falls back to app_base_url.
    mobile_api_url: str = ""

    # ------------------------------------------------------------------
    # Origin gatekeeper
    # ------------------------------------------------------------------

    allowed_origins: str = ""
    allowed_mobile_schemes: str = "exp://,nopassmobile://"
    # None means "derive from debug": strict in production, fail-open in dev.
    strict_origin_check: Optional[bool] = None
    trusted_hosts: str = "*"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    bcrypt_rounds: int = 12
    session_expire_seconds: int = 30 * 24 * 3600
    mobile_token_expire_seconds: int = 7 * 24 * 3600
    federated_token_expire_seconds: int = 30 * 24 * 3600
    reset_token_expire_seconds: int = 3600
    # Login currently reports "User not found" and "Invalid password" separately.
    # Set true to collapse both into one bad_credentials response.
    unify_login_errors: bool = False
    mobile_redirect_default: str = "nopassmobile://redirect"

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""

    # Separate OAuth apps for the mobile client (different redirect URIs)
    google_mobile_client_id: str = ""
    google_mobile_client_secret: str = ""
    github_mobile_client_id: str = ""
    github_mobile_client_secret: str = ""

    oauth_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    email_user: str = ""
    email_pass: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def allowed_origin_list(self) -> list[str]:
        return _split_csv(self.allowed_origins)

    @property
    def mobile_scheme_list(self) -> list[str]:
        return _split_csv(self.allowed_mobile_schemes)

    @property
    def trusted_host_list(self) -> list[str]:
        return _split_csv(self.trusted_hosts) or ["*"]

    @property
    def mobile_base_url(self) -> str:
        return (self.mobile_api_url or self.app_base_url).rstrip("/")

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce SECRET_KEY and ENCRYPTION_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Sessions and encrypted records will not survive restart --
            acceptable for local dev only.

        Production mode (DEBUG=false or not set): refuse to start if either
            key is missing.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.encryption_key:
            if self.debug:
                self.encryption_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated ENCRYPTION_KEY. "
                    "Stored secrets will be unreadable after a restart."
                )
            else:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production mode. " "Generate one with: python main.py keygen"
                )
        if len(self.encryption_key) != 64 or any(c not in string.hexdigits for c in self.encryption_key):
            raise ValueError("ENCRYPTION_KEY must be 64 hex characters (256 bits).")

        if self.strict_origin_check is None:
            self.strict_origin_check = not self.debug
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
