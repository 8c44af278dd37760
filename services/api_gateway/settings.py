"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    store_backend: Literal["memory", "sql"] = Field(
        default="memory", description="Relational store: memory or sql"
    )
    database_url: str = Field(
        default="sqlite:///./data/sky_review.db",
        description="SQLAlchemy database URL used by the sql store backend",
    )

    blob_backend: Literal["local", "s3"] = Field(
        default="local", description="Blob store: local directory or s3"
    )
    blob_dir: str = Field(default="./data/blobs", description="Local blob root")
    public_base_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Base URL clients use to reach the gateway",
    )
    upload_token_secret: str = Field(
        default="change-me", description="HMAC secret for local upload tokens"
    )
    upload_token_ttl_sec: int = Field(
        default=3600, description="Lifetime of signed upload destinations"
    )

    s3_endpoint: Optional[str] = Field(None, description="S3-compatible endpoint URL")
    s3_bucket: Optional[str] = Field(None, description="S3 bucket name")
    s3_access_key_id: Optional[str] = Field(None, description="S3 access key ID")
    s3_secret_access_key: Optional[str] = Field(
        None, description="S3 secret access key"
    )
    s3_region: str = Field(default="us-east-1", description="S3 region")

    analysis_delay_sec: float = Field(
        default=15.0, ge=0.0, description="Analysis worker turnaround in seconds"
    )
    duration_probe: Literal["simulated", "ffprobe"] = Field(
        default="simulated", description="How video durations are measured"
    )
    ffprobe_path: str = Field(default="ffprobe", description="ffprobe binary")
    resume_on_startup: bool = Field(
        default=True, description="Resume interrupted analysis at startup"
    )

    cron_token: Optional[str] = Field(
        None, description="Shared token for the watched-folder scan trigger"
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
