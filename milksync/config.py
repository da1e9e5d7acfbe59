"""
Configuration settings for the milksync client.

Uses environment variables (prefixed ``MILKSYNC_``) with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MILKSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote service credentials
    api_key: str = Field(default="")
    shared_secret: SecretStr = Field(default=SecretStr(""))

    # Remote service endpoints
    rest_url: str = "https://api.rememberthemilk.com/services/rest/"
    auth_url: str = "https://www.rememberthemilk.com/services/auth/"
    api_timeout: float = 30.0

    # Retry controller
    fire_interval: float = 30.0  # Seconds between timer-driven ticks
    pull_tasks_interval: float = 60 * 60.0  # Pull no more than every 60 mins
    pull_lists_interval: float = 60 * 60.0
    merge_batch_size: int = 10

    # Local storage
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".milksync")
    cache_db_name: str = "milksync.db"

    @field_validator("merge_batch_size")
    @classmethod
    def check_batch_size(cls, v: int) -> int:
        """Merge batches must hold at least one task."""
        if v < 1:
            raise ValueError("merge_batch_size must be at least 1")
        return v

    @property
    def cache_db_path(self) -> Path:
        """Full path to the local database."""
        return Path(self.cache_dir) / self.cache_db_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
