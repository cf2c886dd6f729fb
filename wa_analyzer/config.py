"""Application settings loaded from environment variables / ``.env``."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Storage ---
    storage_enabled: bool = True
    storage_backend: Literal["s3", "memory"] = Field(
        default="s3",
        description="'s3' uses S3 + DynamoDB, 'memory' keeps everything in process.",
    )
    storage_bucket: str = ""
    storage_table: str = ""

    # --- AWS ---
    aws_region: str = "us-east-1"
    aws_endpoint_url: str | None = None
    aws_max_attempts: int = Field(default=5, ge=1)
    aws_connect_timeout: float = 5.0
    aws_read_timeout: float = 60.0

    # --- Upload policy ---
    token_limit: int = Field(default=200_000, ge=0)
    max_upload_bytes: int = 100 * 1024 * 1024
    max_supporting_document_bytes: int = 4_500_000

    # --- HTTP / logging ---
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = "INFO"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
