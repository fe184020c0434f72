"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Applies the signing-secret policy after all
      fields are resolved from environment.

Security notes:
  A missing JWT_SECRET falls back to a fixed, publicly known value so that a
  misconfigured deployment still starts. Tokens signed with it are forgeable by
  anyone who reads this file; the fallback is logged as a WARNING at startup
  and must be treated as a deployment defect.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("carterisland.config")

FALLBACK_JWT_SECRET = "carter-island-fallback-secret"  # nosec B105 -- documented insecure default

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'carterisland_auth.db'}"


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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # swaps in the fallback so callers never see "".
    jwt_secret: str = ""
    # Token validity window and server-side session lifetime (24 hours).
    token_expire_seconds: int = 24 * 60 * 60
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Cache (optional -- all empty means caching is disabled)
    # ------------------------------------------------------------------

    redis_url: str = ""
    redis_host: str = ""
    redis_port: int = 6379
    redis_socket_timeout: float = 5.0
    user_cache_ttl_seconds: int = 900
    index_cache_ttl_seconds: int = 300
    me_max_age_seconds: int = 300

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def apply_secret_fallback(self) -> "Settings":
        """Fall back to the insecure default signing secret when none is configured."""
        if not self.jwt_secret:
            self.jwt_secret = FALLBACK_JWT_SECRET
            logger.warning(
                "WARNING: JWT_SECRET is not set; using the insecure fallback secret. "
                "Set JWT_SECRET in your environment or .env file before deploying."
            )
        return self

    @property
    def cache_configured(self) -> bool:
        return bool(self.redis_url or self.redis_host)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
