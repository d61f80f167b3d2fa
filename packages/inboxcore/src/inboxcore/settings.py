"""
Inbox settings.

All configuration comes from environment variables (optionally a local .env
file). Values are read once and cached; tests call ``get_settings.cache_clear()``
after changing the environment.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Storage backends
    DATABASE_URL: str = "sqlite:///./inbox.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    # "stream" publishes deliveries to Redis for the worker,
    # "inline" processes them in the webhook process after acknowledging.
    INBOX_DISPATCH_MODE: str = "stream"

    # WhatsApp Cloud API
    WHATSAPP_APP_SECRET: str = ""
    WHATSAPP_ENCRYPTION_KEY: str = ""
    GRAPH_API_BASE_URL: str = "https://graph.facebook.com"
    MEDIA_FETCH_TIMEOUT: float = 30.0

    # Object storage (S3 or S3-compatible)
    MEDIA_BUCKET: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    S3_ENDPOINT_URL: str | None = None
    SIGNED_URL_TTL_SECONDS: int = 86400


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to avoid re-reading the environment on every request.
    """
    return Settings()
