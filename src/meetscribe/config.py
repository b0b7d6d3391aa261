"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

import base64
import os
import tempfile
from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Database (empty = in-memory repository, data lost on restart)
    DATABASE_URL: str = ""

    # Meetings
    DEFAULT_LANGUAGE: str = "sv"
    LOW_CONFIDENCE_THRESHOLD: float = 0.5

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Speech-to-text (OpenAI transcription endpoint)
    OPENAI_API_KEY: str = ""
    OPENAI_STT_MODEL: str = ""
    STT_TIMEOUT_SECONDS: float = 25.0
    USE_MOCK_STT: bool = False

    # Google Docs export
    GOOGLE_SERVICE_ACCOUNT_FILE: str = ""  # Path to service account JSON key file
    GOOGLE_SERVICE_ACCOUNT_JSON_B64: str = ""  # For containerized deployments
    GOOGLE_DRIVE_FOLDER_ID: str = ""
    USE_MOCK_DOCUMENT_EXPORT: bool = False
    EXPORT_DIR: str = ".exports"
    EXPORT_MAX_ATTEMPTS: int = 3
    EXPORT_BACKOFF_BASE_MS: int = 300

    # Live event stream
    LIVE_HEARTBEAT_SECONDS: float = 15.0
    EVENT_QUEUE_SIZE: int = 100

    def get_service_account_path(self) -> str | None:
        """Return path to Google service account JSON file.

        Prefers GOOGLE_SERVICE_ACCOUNT_FILE (direct path) if set.
        Falls back to decoding GOOGLE_SERVICE_ACCOUNT_JSON_B64 into a temp file
        for containerized deployments where mounting a file is impractical.
        Returns None if neither is configured.
        """
        if self.GOOGLE_SERVICE_ACCOUNT_FILE:
            return self.GOOGLE_SERVICE_ACCOUNT_FILE
        if self.GOOGLE_SERVICE_ACCOUNT_JSON_B64:
            decoded = base64.b64decode(self.GOOGLE_SERVICE_ACCOUNT_JSON_B64)
            tmp_path = os.path.join(tempfile.gettempdir(), "gcp-service-account.json")
            with open(tmp_path, "wb") as f:
                f.write(decoded)
            return tmp_path
        return None


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
