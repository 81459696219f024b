"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./momento.db"

    # Message queries
    default_page_size: int = 50
    max_page_size: int = 100
    default_search_limit: int = 20

    # Identical content from the same sender within this window is not stored twice (0 disables)
    duplicate_send_window_seconds: float = 2.0

    # Application
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
