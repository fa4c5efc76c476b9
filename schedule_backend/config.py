"""
Configuration and settings for the schedule backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Key-value store (Redis) for refresh tokens, rate limits and import locks
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="schedule:")

    # File storage: local directory or S3-compatible bucket
    files_base_dir: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Tokens
    jwt_access_secret: str = Field(
        default="change-me-access-secret-at-least-32-bytes-long"
    )
    jwt_refresh_secret: str = Field(
        default="change-me-refresh-secret-at-least-32-bytes-long"
    )
    access_exp_seconds: int = Field(default=900)
    refresh_exp_seconds: int = Field(default=1209600)
    cookie_secure: bool = Field(default=False)

    # Login protection
    max_failed_login: int = Field(default=5)
    lock_minutes: int = Field(default=15)
    password_hash_rounds: int = Field(default=12)
    login_rate_per_minute: int = Field(default=20)
    refresh_rate_per_minute: int = Field(default=30)

    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173"]
    )

    # Admin account created or promoted at startup
    admin_seed_enabled: bool = Field(default=False)
    admin_email: str = Field(default="admin@example.com")
    admin_password: str = Field(default="change-me-admin-password")
    admin_nickname: str = Field(default="admin")

    # Migration archive bounds
    migration_max_depth: int = Field(default=5)
    migration_max_entries: int = Field(default=5000)
    migration_max_entry_bytes: int = Field(default=50 * 1024 * 1024)
    migration_max_total_bytes: int = Field(default=500 * 1024 * 1024)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
