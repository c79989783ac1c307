"""Runtime settings for the job relay.

Every knob is read from the environment (or ``.env``) so the same process can be
tuned per deployment without code changes.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "production"

    # Dead letter queue
    DLQ_PATH: str = "data/dlq.json"
    ALERT_WEBHOOK_URL: str = ""
    ALERT_TIMEOUT_SECONDS: float = 10.0

    # Job defaults
    JOB_MAX_RETRIES: int = 3
    JOB_RETRY_DELAY_MS: int = 1000
    QUEUE_MAX_SIZE: Optional[int] = None  # None = unbounded

    # Graceful shutdown
    SHUTDOWN_MAX_WAIT_SECONDS: float = 30.0
    SHUTDOWN_POLL_INTERVAL_SECONDS: float = 0.1

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("JOB_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("JOB_MAX_RETRIES must be at least 1")
        return v

    @field_validator("JOB_RETRY_DELAY_MS")
    @classmethod
    def validate_retry_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("JOB_RETRY_DELAY_MS must not be negative")
        return v

    @field_validator("QUEUE_MAX_SIZE")
    @classmethod
    def validate_queue_max_size(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("QUEUE_MAX_SIZE must be positive when set")
        return v


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings_cache
    _settings_cache = None
