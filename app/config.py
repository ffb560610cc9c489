"""Configuration settings for Allo Ingest."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./allo_ingest.db")

    # JWT (tokens are issued by the auth service, only verified here)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "480"))

    # Blob storage
    BLOB_BACKEND: str = os.getenv("BLOB_BACKEND", "s3")  # s3, local
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "100"))
    MAX_ARCHIVE_SIZE_MB: int = int(os.getenv("MAX_ARCHIVE_SIZE_MB", "500"))
    S3_ENDPOINT_URL: str | None = os.getenv("S3_ENDPOINT_URL") or None
    S3_ACCESS_KEY: str | None = os.getenv("S3_ACCESS_KEY") or None
    S3_SECRET_KEY: str | None = os.getenv("S3_SECRET_KEY") or None
    S3_REGION: str = os.getenv("S3_REGION", "us-east-1")
    S3_AUDIO_BUCKET: str = os.getenv("S3_AUDIO_BUCKET", "allo-audio")

    # Job queue
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    QUEUE_NAME: str = os.getenv("QUEUE_NAME", "audio-processing")
    JOB_TIMEOUT_SECONDS: int = int(os.getenv("JOB_TIMEOUT_SECONDS", "900"))

    # Ingestion
    UPLOAD_CONCURRENCY: int = int(os.getenv("UPLOAD_CONCURRENCY", "5"))

    # Worker
    WHISPER_MODEL_SIZE: str = os.getenv("WHISPER_MODEL_SIZE", "base")
    WHISPER_LANGUAGE: str | None = os.getenv("WHISPER_LANGUAGE", "fr") or None

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (tokens from the auth service will fail)")
        if self.BLOB_BACKEND not in ("s3", "local"):
            errors.append(f"Unknown BLOB_BACKEND '{self.BLOB_BACKEND}' - expected 's3' or 'local'")
        if self.UPLOAD_CONCURRENCY < 1:
            errors.append("UPLOAD_CONCURRENCY must be at least 1 - falling back to 1")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
