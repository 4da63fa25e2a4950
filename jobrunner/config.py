from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Store Configuration
    redis_url: Optional[str] = None
    queue_name: str = "jobs"

    # Job Processing Configuration
    job_concurrency: int = 5
    job_retry_delay: int = 5000  # milliseconds
    job_max_retries: int = 3
    job_poll_interval: float = 1.0  # seconds
    job_error_backoff: float = 5.0  # seconds

    # Retention Configuration
    job_remove_on_complete: int = 100
    job_remove_on_fail: int = 50

    # Notification Configuration
    notification_webhook_url: Optional[str] = None
    notification_timeout: float = 30.0

    # Logging Configuration
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def uses_redis(self) -> bool:
        """Return whether a Redis store is configured."""
        return bool(self.redis_url)


# Global settings instance
settings = Settings()
