"""
Application configuration using environment variables.
"""
import os
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Socialise API"
    debug: bool = False
    environment: str = "development"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./socialise.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Rate limiting
    rate_limit: str = "100/minute"

    # Publish queue
    queue_name: str = "post-publish"
    queue_max_attempts: int = 5
    queue_backoff_ms: int = 1000
    queue_connect_retries: int = 3
    queue_retry_backoff: float = 0.5  # seconds, exponential base
    queue_completed_retention_seconds: int = 24 * 60 * 60
    queue_failed_retention_seconds: int = 7 * 24 * 60 * 60

    # Worker
    worker_concurrency: int = 5
    worker_poll_interval: float = 1.0  # seconds
    worker_stall_timeout: int = 300  # seconds before an active job is considered stalled
    worker_cleanup_interval: int = 600  # seconds between retention sweeps
    publish_max_parallel: int = 5
    publish_timeout_seconds: int = 30
    embedded_worker: bool = False  # run the publisher worker inside the API process

    # Platform APIs
    graph_api_base_url: str = "https://graph.facebook.com/v19.0"

    # Caching
    stats_cache_ttl_seconds: int = 5

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "SOCIALISE_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
