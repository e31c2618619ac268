"""Centralized application configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance, including the SMS
ingestion tunables, which are handed to the library as an IngestionConfig.
"""

from pydantic_settings import BaseSettings
from pydantic import Field

from packages.sms_ingestion.config import IngestionConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_ANON_KEY: str = Field(..., description="Supabase anon/public key")
    SUPABASE_SERVICE_KEY: str = Field(
        default="",
        description="Supabase service-role key (for Celery worker and background scans)",
    )

    # CORS
    ALLOWED_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated allowed origins for CORS",
    )

    # Redis
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )

    # App
    APP_VERSION: str = Field(default="0.4.0", description="Application version")

    # SMS ingestion
    SMS_INGESTION_ENABLED: bool = Field(default=True, description="Master switch for SMS ingestion")
    SMS_POLL_INTERVAL_SECONDS: float = Field(default=20.0, description="Inbox poll interval")
    SMS_POLL_BATCH_SIZE: int = Field(default=20, description="Messages read per poll")
    SMS_CATCHUP_BATCH_SIZE: int = Field(default=50, description="Messages read per catch-up scan")
    SMS_DEDUP_TTL_SECONDS: float = Field(
        default=300.0, description="How long completed message identities are remembered"
    )
    SMS_BACKGROUND_MIN_INTERVAL_SECONDS: float = Field(
        default=900.0, description="Minimum spacing of background scans"
    )
    SMS_DUPLICATE_WINDOW_SECONDS: float = Field(
        default=300.0, description="Half-width of the amount/time duplicate window"
    )
    SMS_CATEGORY_CACHE_TTL_SECONDS: float = Field(default=300.0, description="Category cache TTL")
    SMS_WATERMARK_PATH: str = Field(
        default=".cache/sms_watermarks.json",
        description="Local file holding per-user watermarks",
    )
    SMS_SOURCE_BACKEND: str = Field(
        default="memory",
        description="Message inbox backend: memory (single process) or redis (shared with the worker)",
    )

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    def ingestion_config(self) -> IngestionConfig:
        return IngestionConfig(
            poll_interval_seconds=self.SMS_POLL_INTERVAL_SECONDS,
            poll_batch_size=self.SMS_POLL_BATCH_SIZE,
            catchup_batch_size=self.SMS_CATCHUP_BATCH_SIZE,
            dedup_ttl_seconds=self.SMS_DEDUP_TTL_SECONDS,
            background_min_interval_seconds=self.SMS_BACKGROUND_MIN_INTERVAL_SECONDS,
            duplicate_window_seconds=self.SMS_DUPLICATE_WINDOW_SECONDS,
            category_cache_ttl_seconds=self.SMS_CATEGORY_CACHE_TTL_SECONDS,
            watermark_path=self.SMS_WATERMARK_PATH or None,
            ingestion_enabled=self.SMS_INGESTION_ENABLED,
        )

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Build a fresh Settings from the environment."""
    return Settings()


# Module-level singleton (lazy: only created when first accessed)
try:
    settings = get_settings()
except Exception:
    # Tests build their own Settings when the env is not configured
    settings = None  # type: ignore[assignment]
