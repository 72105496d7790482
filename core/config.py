"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for permitauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, redis_url -> REDIS_URL).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every session token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  Policy constants (fingerprint similarity threshold and per-attribute
  weights, OTP attempt limit, rotation mutex) live here rather than in the
  services so operators can tune the security/usability tradeoff.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
ephemeral/, or notify/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("permitauth.config")

# Attributes compared when a magic link is redeemed. Equal weights reproduce a
# plain "matching attributes / 9" score.
DEFAULT_SIMILARITY_WEIGHTS: dict[str, float] = {
    "user_agent": 1.0,
    "screen_resolution": 1.0,
    "timezone": 1.0,
    "language": 1.0,
    "platform": 1.0,
    "cookie_enabled": 1.0,
    "plugins": 1.0,
    "canvas_fingerprint": 1.0,
    "webgl_fingerprint": 1.0,
}


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
    app_name: str = "permitauth"

    # ------------------------------------------------------------------
    # Ephemeral store (Redis) and user database
    # ------------------------------------------------------------------

    redis_url: str = "redis://localhost:6379/0"
    # Upper bound on every store round trip; a stalled call surfaces as a
    # DependencyError instead of hanging the request.
    store_timeout_seconds: float = 5.0
    store_scan_count: int = 100
    database_url: str = "sqlite:///permitauth_users.db"

    # ------------------------------------------------------------------
    # URLs embedded in emails and redirects
    # ------------------------------------------------------------------

    base_url: str = "http://localhost:8000"
    frontend_base_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # HTTP middleware (JSON lists in the environment)
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    # ------------------------------------------------------------------
    # Lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    magic_link_access_token_expire_seconds: int = 24 * 60 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    otp_ttl_seconds: int = 5 * 60
    totp_enrollment_ttl_seconds: int = 10 * 60
    magic_link_ttl_seconds: int = 15 * 60
    # Extra store retention past the ticket's own expiry so that a late
    # redemption reports "expired" instead of "not found".
    magic_link_retention_seconds: int = 60 * 60
    # 0 means trusted devices never expire.
    device_ttl_seconds: int = 30 * 24 * 60 * 60
    audit_event_ttl_seconds: int = 30 * 24 * 60 * 60
    login_challenge_ttl_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Security policy
    # ------------------------------------------------------------------

    fingerprint_similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    fingerprint_similarity_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SIMILARITY_WEIGHTS)
    )
    # 0 keeps the historical behaviour: wrong codes never burn the challenge.
    otp_max_attempts: int = 0
    refresh_rotation_lock: bool = True
    refresh_rotation_lock_seconds: int = 5

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cookie_samesite: str = "lax"
    cookie_domain: str | None = None

    # ------------------------------------------------------------------
    # TOTP
    # ------------------------------------------------------------------

    totp_issuer: str = "AcrePoint"
    totp_valid_window: int = 1

    # ------------------------------------------------------------------
    # Email (empty smtp_host selects the logging sender)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "no-reply@localhost"
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    task_workers: int = 2
    task_queue_limit: int = 100

    # ------------------------------------------------------------------
    # First-run seed
    # ------------------------------------------------------------------

    initial_admin_email: str = ""
    initial_admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
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
        return self

    @model_validator(mode="after")
    def validate_similarity_weights(self) -> "Settings":
        """Reject weight tables that name unknown attributes or sum to zero."""
        unknown = set(self.fingerprint_similarity_weights) - set(DEFAULT_SIMILARITY_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown fingerprint attributes in similarity weights: {sorted(unknown)!r}")
        if sum(self.fingerprint_similarity_weights.values()) <= 0:
            raise ValueError("Fingerprint similarity weights must sum to a positive value.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
