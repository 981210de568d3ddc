"""
SnipShare — Application Configuration
=====================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time; validated before app starts.

Backend credentials fall back to placeholders so the app can be imported and
tested without a real backend project. `validate_required_for_production()`
reports the placeholders at startup.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

PLACEHOLDER_BACKEND_URL = "https://placeholder.supabase.co"
PLACEHOLDER_ANON_KEY = "placeholder-anon-key"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST override BACKEND_URL and BACKEND_ANON_KEY.

    Attributes are grouped by concern for readability.
    """

    # ── Backend-as-a-Service ──────────────────────────────────────────────
    # What: Base URL of the hosted backend project (auth at /auth/v1,
    # tables at /rest/v1)
    backend_url: str = Field(
        default=PLACEHOLDER_BACKEND_URL,
        description="Base URL of the backend project",
    )

    # What: Public (anon) API key sent as `apikey` on every call
    # Row-level security on the backend decides what this key may touch.
    backend_anon_key: str = Field(
        default=PLACEHOLDER_ANON_KEY,
        description="Public API key for the backend project",
    )

    # What: Per-request HTTP timeout for backend calls (seconds)
    backend_timeout: float = Field(default=15.0, gt=0, le=120)

    # What: Value of the x-client-info header identifying this app
    backend_client_info: str = Field(default="snipshare/1.0.0")

    # ── Lease Pool ────────────────────────────────────────────────────────
    # What: Upper bound on concurrent checkouts of the shared backend client
    pool_max_leases: int = Field(default=20, ge=1, le=1000)

    # What: Idle tokens kept around after release (the minimum watermark)
    pool_min_idle: int = Field(default=5, ge=0, le=100)

    # What: Seconds an idle token lives before eviction above the watermark
    pool_idle_timeout: float = Field(default=10.0, gt=0, le=3600)

    # What: Seconds a caller waits for a lease before LeaseTimeoutError
    pool_acquire_timeout: float = Field(default=30.0, gt=0, le=600)

    # ── Feed ──────────────────────────────────────────────────────────────
    # What: Client-side timeout raced against the snippet list fetch
    feed_fetch_timeout: float = Field(default=30.0, gt=0, le=300)

    # What: Debounce window applied to search terms before a filter pass
    search_debounce_ms: int = Field(default=300, ge=0, le=5000)

    # ── Retry Configuration ───────────────────────────────────────────────
    # What: Tenacity retry settings for backend READ operations only
    # Backoff: initial wait doubles per attempt (1s, 2s, ...) up to max wait
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_wait: float = Field(default=1.0, ge=0, le=30)
    retry_max_wait: float = Field(default=10.0, ge=0, le=120)

    # ── Registration ──────────────────────────────────────────────────────
    # What: Email domains allowed to register (comma-separated)
    allowed_email_domains: str = Field(default="cribl.io")

    @property
    def allowed_email_domains_list(self) -> List[str]:
        """Splits comma-separated domains into a lowercase list."""
        return [
            domain.strip().lower()
            for domain in self.allowed_email_domains.split(",")
            if domain.strip()
        ]

    # ── Sessions ──────────────────────────────────────────────────────────
    # What: Cookie carrying the opaque client session id
    session_cookie_name: str = Field(default="snipshare_sid")

    # What: Seconds of inactivity before a client session is dropped
    session_idle_ttl: int = Field(default=86_400, ge=60, le=2_592_000)

    # What: Upper bound on live client sessions; the least recently seen is dropped first
    session_max_count: int = Field(default=10_000, ge=1, le=1_000_000)

    # What: Where clients are sent after sign-out or a failed auth callback
    signin_path: str = Field(default="/signin")

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("backend_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalizes the backend URL so paths can be appended directly."""
        return v.rstrip("/")

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that backend credentials are configured.
        When:  Called during app startup (lifespan).
        How:   Checks each required field and raises ValueError with guidance.
        """
        errors = []
        if self.backend_url == PLACEHOLDER_BACKEND_URL:
            errors.append("BACKEND_URL is not set (using placeholder URL).")
        if self.backend_anon_key == PLACEHOLDER_ANON_KEY:
            errors.append("BACKEND_ANON_KEY is not set (using placeholder key).")
        if self.pool_min_idle > self.pool_max_leases:
            errors.append("POOL_MIN_IDLE must not exceed POOL_MAX_LEASES.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance, imported throughout the application
settings = Settings()
