"""Application configuration using pydantic-settings."""

from enum import Enum
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RemoteBackend(str, Enum):
    """Supported remote document stores."""

    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "ReadBoost"
    debug: bool = False
    port: int = 8012
    log_level: str = "INFO"
    json_logs: bool = False

    # Remote store
    remote_backend: RemoteBackend = RemoteBackend.REDIS
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "readboost"
    transaction_retries: int = 5

    # Local store
    local_database_url: str = "sqlite:///./readboost.db"
    device_key: str = "device"

    # Store calls slower than this count as failures
    store_timeout_seconds: float = 10.0

    # Progress
    day_timezone: str = "UTC"
    default_daily_target: int = 5  # minutes
    leaderboard_limit: int = 10

    # Identity used when the caller is not authenticated
    placeholder_user_id: str = "local_user_default"
    placeholder_display_name: str = "Local User"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    @model_validator(mode="after")
    def validate_settings(self):
        """Validate settings that depend on each other."""
        errors = []

        if self.remote_backend == RemoteBackend.REDIS and not self.redis_url:
            errors.append("REDIS_URL is required when using the redis backend")

        if self.store_timeout_seconds <= 0:
            errors.append("STORE_TIMEOUT_SECONDS must be positive")
        if self.transaction_retries < 1:
            errors.append("TRANSACTION_RETRIES must be at least 1")
        if self.default_daily_target <= 0:
            errors.append("DEFAULT_DAILY_TARGET must be positive")

        try:
            ZoneInfo(self.day_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"DAY_TIMEZONE '{self.day_timezone}' is not a known timezone")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")

        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.day_timezone)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
