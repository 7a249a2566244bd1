"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for the admin auth facility happen here. No
module should call os.getenv() or os.environ.get() directly.

Design patterns used:
  BaseSettings (pydantic-settings): reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. google_client_id -> GOOGLE_CLIENT_ID). Complex fields (the admin
      allowlist, redirect URI and mobile client maps) are read as JSON.

  Explicit injection: components receive a Settings instance at construction
      (see auth/facility.create_facility). get_settings() exists only for the
      hosting process, which builds the facility once at startup. Nothing
      below the composition root looks configuration up on its own.

  @model_validator(mode="after"): cross-field checks that must hold before
      any component is built.

Layer rule: core/ is the kernel. This module may not import from admins/ or
auth/.
"""

import logging
from functools import lru_cache
from typing import Any, Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.constants import DEFAULT_PASSWORD_RESET_TTL, DEFAULT_SESSION_TTL

logger = logging.getLogger("adminauth.config")


class Settings(BaseSettings):
    """Deployment settings for the admin auth facility.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file.
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

    # ------------------------------------------------------------------
    # Admin store
    # ------------------------------------------------------------------

    # False = config-only mode: admins come from admin_users and every
    # mutation fails with DirectoryReadOnly.
    use_db: bool = True
    database_url: str = "sqlite+aiosqlite:///./db/admin_auth.db"
    # Static allowlist. In store mode it is also the seed list applied at startup.
    admin_users: list[dict[str, Any]] = []
    # Empty string means a random salt per hash.
    password_hash_salt: str = ""

    # ------------------------------------------------------------------
    # Google identity provider
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    # Context name -> redirect URI, used by the authorization code exchange.
    google_redirect_uris: dict[str, str] = {}
    # Client name -> client id for the mobile apps ("android", "ios", ...).
    google_mobile_clients: dict[str, str] = {}
    google_http_timeout: float = 10.0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_backend: Literal["sql", "redis"] = "sql"
    redis_url: str = ""
    session_ttl_seconds: int = int(DEFAULT_SESSION_TTL.total_seconds())
    password_reset_ttl_seconds: int = int(DEFAULT_PASSWORD_RESET_TTL.total_seconds())

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_backends(self) -> "Settings":
        """Reject combinations that would fail on the first request instead of at startup."""
        if self.token_backend == "redis" and not self.redis_url:
            raise ValueError("REDIS_URL is required when TOKEN_BACKEND=redis.")
        if self.session_ttl_seconds <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be positive.")
        if not self.use_db and not self.admin_users:
            logger.warning("Config-only mode with an empty ADMIN_USERS list: nobody will be able to log in.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    Only the hosting application should call this, once, and hand the result
    to create_facility(). In tests, construct Settings(...) directly.
    """
    return Settings()
