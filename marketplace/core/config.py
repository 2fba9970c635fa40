"""Configuration settings for the marketplace backend."""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    storage_backend: Literal["firestore", "memory"] = "firestore"
    firebase_project_id: Optional[str] = None
    firebase_credentials_path: Optional[str] = None  # falls back to application default credentials
    transaction_timeout_seconds: Optional[float] = 10.0

    # Cache
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "marketplace"
    cache_default_ttl: int = 300
    cache_tag_ttl: int = 60 * 60 * 24

    # JWT (tokens are issued elsewhere; we only verify them)
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
