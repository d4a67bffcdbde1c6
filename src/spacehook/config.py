"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Event columns that may take part in the duplicate fingerprint
FINGERPRINT_CANDIDATES = ("user_id", "media_url", "media_type", "space_name", "tweet_url", "ip")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables with SPACEHOOK_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="SPACEHOOK_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    database_url: str
    redis_url: str | None = None
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:5000"]
    # Browser extension origins (Chrome extension ids are 32 letters a-p)
    cors_origin_regex: str | None = r"chrome-extension://[a-p]{32}"
    trust_forwarded_for: bool = False
    rate_limit_requests: int = 300
    rate_limit_window_seconds: int = 60
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Ingestion ---
    fingerprint_fields: list[str] = ["media_url", "tweet_url"]
    max_batch_size: int = 500

    # --- Feed ---
    feed_max_items: int = 200

    # --- Stats ---
    stats_cache_ttl_seconds: int = 10

    # --- Live stream ---
    subscriber_queue_size: int = 100
    sse_keepalive_seconds: float = 15.0

    # --- Reconciliation sweep ---
    sweep_interval_seconds: int = 24 * 60 * 60
    sweep_on_startup: bool = True

    @field_validator("fingerprint_fields")
    @classmethod
    def _check_fingerprint_fields(cls, value: list[str]) -> list[str]:
        if not value:
            msg = "fingerprint_fields must name at least one column"
            raise ValueError(msg)
        unknown = [name for name in value if name not in FINGERPRINT_CANDIDATES]
        if unknown:
            msg = f"Unknown fingerprint fields: {', '.join(unknown)}"
            raise ValueError(msg)
        if len(set(value)) != len(value):
            msg = "fingerprint_fields must not repeat a column"
            raise ValueError(msg)
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
