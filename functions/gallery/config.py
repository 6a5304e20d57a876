"""
Configuration and settings for the gallery backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Cloudflare R2 (S3-compatible)
    r2_account_id: Optional[str] = Field(default=None)
    r2_access_key_id: Optional[str] = Field(default=None)
    r2_secret_access_key: Optional[str] = Field(default=None)
    r2_bucket_name: Optional[str] = Field(default=None)
    r2_public_url: str = Field(default="https://example.test/storage")

    # Managed auth (Supabase)
    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)
    admin_email: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Analytics queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="gallery:analytics")

    # Uploads
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    thumbnail_max_size: int = Field(default=800)
    thumbnail_quality: int = Field(default=80)

    # Navigator sessions kept in memory; the least recently used is evicted
    nav_max_sessions: int = Field(default=10_000, ge=1)

    # Ctrl/Cmd + key -> overlay
    shortcut_bindings: dict[str, str] = Field(
        default_factory=lambda: {"k": "search", "b": "browse"}
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
