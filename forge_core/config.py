"""
Unified configuration for figurine-forge.

This module provides a single Settings class that consolidates all
environment variables used by the conversion services and the CLI.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for all figurine-forge services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "figurine-forge"

    # Vendor (Meshy) API
    MESHY_API_URL: str = "https://api.meshy.ai"
    MESHY_API_KEY: str = ""
    VENDOR_SUBMIT_TIMEOUT_SECONDS: float = 15.0
    VENDOR_STATUS_TIMEOUT_SECONDS: float = 10.0
    SUBMIT_MAX_ATTEMPTS: int = 2

    # Polling budget
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_MAX_ATTEMPTS: int = 60

    # Progress sub-ranges reported to callers
    PROGRESS_SUBMITTED: int = 30
    PROGRESS_VENDOR_CEILING: int = 90

    # Artifact downloads
    DOWNLOAD_TIMEOUT_SECONDS: float = 15.0

    # Input limits
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
    MAX_PROMPT_LENGTH: int = 1000

    # PostgreSQL
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"

    # MinIO Configuration
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_BUCKET_MODELS: str = "figurine-models"
    MINIO_BUCKET_IMAGES: str = "figurine-images"
    MINIO_SECURE: bool = False
    MINIO_PUBLIC_URL: str = "http://localhost:9000"

    # Local storage (development)
    USE_LOCAL_STORAGE: bool = False
    LOCAL_STORAGE_PATH: str = "/tmp/figurine-forge-storage"
    LOCAL_STORAGE_PUBLIC_URL: str = "file:///tmp/figurine-forge-storage"

    # Status snapshot cache
    STATUS_CACHE_TTL_SECONDS: float = 10.0
    STATUS_CACHE_MAX_ENTRIES: int = 1024

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
