"""Configuration settings for Health Diary."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_AUDIO_TYPES = "audio/wav,audio/x-wav,audio/mp3,audio/mpeg,audio/mp4,audio/x-m4a,audio/webm,audio/ogg"


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./health_diary.db")

    # JWT (tokens are issued by the account service)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "480"))
    JWT_ISSUER: str | None = os.getenv("JWT_ISSUER") or None
    JWT_AUDIENCE: str | None = os.getenv("JWT_AUDIENCE") or None

    # Blob storage
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")  # local, s3
    LOCAL_STORAGE_DIR: str = os.getenv("LOCAL_STORAGE_DIR", "./storage")
    S3_BUCKET_NAME: str = os.getenv("S3_BUCKET_NAME", "healthdiary-audio-files")
    S3_ENDPOINT_URL: str | None = os.getenv("S3_ENDPOINT_URL") or None
    AWS_REGION: str = os.getenv("AWS_REGION", "eu-west-2")
    SIGNED_URL_TTL_SECONDS: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))

    # Transcription
    TRANSCRIPTION_PROVIDER: str = os.getenv("TRANSCRIPTION_PROVIDER", "aws")  # aws, whisper
    TRANSCRIPTION_LANGUAGE: str = os.getenv("TRANSCRIPTION_LANGUAGE", "en-GB")
    TRANSCRIPTION_MAX_POLL_ERRORS: int = int(os.getenv("TRANSCRIPTION_MAX_POLL_ERRORS", "30"))
    TRANSCRIBE_VOCABULARY_FILTER: str | None = os.getenv("TRANSCRIBE_VOCABULARY_FILTER") or None
    WHISPER_MODEL_SIZE: str = os.getenv("WHISPER_MODEL_SIZE", "base")

    # Analysis
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY") or None
    ANALYSIS_MODEL: str = os.getenv("ANALYSIS_MODEL", "claude-3-5-sonnet-20241022")
    ANALYSIS_MAX_TOKENS: int = int(os.getenv("ANALYSIS_MAX_TOKENS", "4000"))
    ANALYSIS_TEMPERATURE: float = float(os.getenv("ANALYSIS_TEMPERATURE", "0.3"))

    # Applied to every provider and storage call
    PROVIDER_TIMEOUT_SECONDS: int = int(os.getenv("PROVIDER_TIMEOUT_SECONDS", "60"))

    # Scheduler
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    SCHEDULER_INTERVAL_SECONDS: float = float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))

    # Upload
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))
    ALLOWED_AUDIO_TYPES: list[str] = [
        t.strip() for t in os.getenv("ALLOWED_AUDIO_TYPES", DEFAULT_AUDIO_TYPES).split(",") if t.strip()
    ]

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (tokens from the account service will fail)")
        if self.STORAGE_BACKEND not in ("local", "s3"):
            errors.append(f"Unknown STORAGE_BACKEND '{self.STORAGE_BACKEND}' - falling back to local")
        if self.TRANSCRIPTION_PROVIDER not in ("aws", "whisper"):
            errors.append(f"Unknown TRANSCRIPTION_PROVIDER '{self.TRANSCRIPTION_PROVIDER}' - falling back to aws")
        if self.TRANSCRIPTION_PROVIDER == "aws" and self.STORAGE_BACKEND != "s3":
            errors.append("TRANSCRIPTION_PROVIDER=aws reads audio from S3; set STORAGE_BACKEND=s3")
        if not self.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is not set - analysis calls will fail")
        if self.SCHEDULER_INTERVAL_SECONDS <= 0:
            errors.append("SCHEDULER_INTERVAL_SECONDS must be positive")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
