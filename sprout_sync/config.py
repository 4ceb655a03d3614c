"""Application configuration."""
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "testserver"}


class Settings(BaseSettings):
    """Sync client settings loaded from environment variables."""

    # App
    app_name: str = "Sprout Sync"
    debug: bool = False
    log_level: str = "INFO"

    # Local store
    database_url: str = "sqlite:///./data/sprout_sync.db"
    database_key: str = ""

    # Remote API
    api_base_url: str = "https://api.getsprout.io"
    request_timeout_seconds: float = 15.0
    connectivity_timeout_seconds: float = 3.0

    # Credentials written by the auth layer
    token_store_path: Path = Path("./data/tokens.json")

    # Sync policy
    sync_interval_minutes: int = 15
    max_run_attempts: int = 3
    retry_backoff_seconds: float = 5.0
    offline_retry_seconds: float = 30.0
    max_record_rejections: int = 3
    sync_page_size: int = 50

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, value: str) -> str:
        """Fail closed if the API URL would send bearer tokens in clear text."""
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("API_BASE_URL must be an absolute http(s) URL.")

        if parsed.scheme == "http" and parsed.hostname not in LOCAL_HOSTS:
            raise ValueError("API_BASE_URL must use https outside of localhost.")

        return value.rstrip("/")

    @field_validator(
        "sync_interval_minutes",
        "max_run_attempts",
        "max_record_rejections",
        "request_timeout_seconds",
        "connectivity_timeout_seconds",
        "offline_retry_seconds",
    )
    @classmethod
    def validate_positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("sync_page_size")
    @classmethod
    def validate_page_size(cls, value: int) -> int:
        """The sync endpoint caps pages at 100 records."""
        if not 1 <= value <= 100:
            raise ValueError("SYNC_PAGE_SIZE must be between 1 and 100.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
