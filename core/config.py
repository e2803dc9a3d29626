"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Pulse happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, jwks_url -> JWKS_URL).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the SECRET_KEY policy, the identity provider wiring,
      and the ordering of the two deduplication horizons.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Local-mode identity
  tokens are HS256-signed with it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
teams/, access/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pulse.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///pulse.db"

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    # "jwks"  -- RS256/ES256 tokens from an external OIDC provider
    # "local" -- HS256 tokens signed with SECRET_KEY (development, tests)
    identity_provider: str = "local"
    jwks_url: str = ""
    token_issuer: str = ""
    token_audience: str = ""
    token_algorithms: list[str] = ["RS256"]
    jwks_cache_seconds: int = 3600
    # Minimum gap between refetches triggered by an unknown kid.
    jwks_refetch_interval_seconds: float = 60.0
    verification_timeout_seconds: float = 5.0
    # Users whose provider supplies no email get "<subject>@<domain>".
    placeholder_email_domain: str = "unknown.invalid"

    # ------------------------------------------------------------------
    # Team creation de-duplication
    # ------------------------------------------------------------------

    dedup_suppression_seconds: float = 3.0
    dedup_eviction_seconds: float = 5.0
    # "memory" -- one process; "sqlite" -- several workers on one host
    dedup_backend: str = "memory"
    dedup_sqlite_path: str = "pulse_dedup.db"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    team_create_rate_limit: str = "30/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Local-mode tokens minted before a restart stop verifying.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Local tokens will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_identity_provider(self) -> "Settings":
        """A JWKS provider is useless without a key set URL."""
        if self.identity_provider not in ("jwks", "local"):
            raise ValueError("IDENTITY_PROVIDER must be 'jwks' or 'local'.")
        if self.identity_provider == "jwks" and not self.jwks_url:
            raise ValueError("JWKS_URL is required when IDENTITY_PROVIDER=jwks.")
        if self.verification_timeout_seconds <= 0:
            raise ValueError("VERIFICATION_TIMEOUT_SECONDS must be positive.")
        return self

    @model_validator(mode="after")
    def validate_dedup_horizons(self) -> "Settings":
        """The suppression window must close before bookkeeping is evicted."""
        if self.dedup_suppression_seconds <= 0 or self.dedup_eviction_seconds <= 0:
            raise ValueError("Deduplication horizons must be positive.")
        if self.dedup_suppression_seconds >= self.dedup_eviction_seconds:
            raise ValueError("DEDUP_SUPPRESSION_SECONDS must be shorter than DEDUP_EVICTION_SECONDS.")
        if self.dedup_backend not in ("memory", "sqlite"):
            raise ValueError("DEDUP_BACKEND must be 'memory' or 'sqlite'.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
