"""
Configuration management for Folder Watch.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage Account Configuration
    storage_account_name: Optional[str] = None
    storage_account_key: Optional[str] = None
    storage_connection_string: Optional[str] = None
    container_name: str = "uploads"
    use_in_memory_storage: bool = False

    # Watcher Configuration
    watch_directory: Path = Path(".")
    include_subdirectories: bool = False
    file_filter: str = "*"

    # Transfer Configuration
    small_file_threshold: int = 1024 * 1024  # bytes, inclusive
    block_size: int = 256 * 1024  # bytes
    retry_backoff_seconds: float = 2.0
    retry_max_retries: int = 1
    coalesce_duplicates: bool = True
    discard_uncommitted_blocks: bool = False
    shutdown_timeout: float = 30.0  # seconds

    # API Configuration
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Folder Watch API"
    api_version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_connection_string(self) -> Optional[str]:
        """Return an explicit connection string or build one from account name and key."""
        if self.storage_connection_string:
            return self.storage_connection_string

        if self.storage_account_name and self.storage_account_key:
            return (
                "DefaultEndpointsProtocol=https;"
                f"AccountName={self.storage_account_name};"
                f"AccountKey={self.storage_account_key};"
                "EndpointSuffix=core.windows.net"
            )

        return None

    def masked_account_key(self) -> str:
        """Account key safe for log output."""
        key = self.storage_account_key or ""
        if len(key) <= 4:
            return "****" if key else ""
        return f"{key[:4]}****"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
