"""Application settings via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings"]


class Settings(BaseSettings):
    """Central configuration — all values from environment."""

    model_config = SettingsConfigDict(env_prefix="DOCQUEUE_")

    # Target environment
    environment: str = "dev"

    # PostgreSQL (empty → in-memory storage)
    pg_dsn: str = ""

    # Redis (empty → in-memory presence + callback queue)
    redis_url: str = ""

    # Clock used to resolve "today" for session-days
    timezone: str = "Asia/Kolkata"

    # Recall gate
    default_recall_interval: int = 5

    # Cursor critical section
    cursor_max_retries: int = 3
    cursor_retry_backoff_ms: int = 50
    lock_timeout_seconds: float = 2.0

    # Logging
    log_json: bool = True
    log_level: str = "INFO"
