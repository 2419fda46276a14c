"""Application configuration."""

import logging
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database holding sync configurations, history and conflicts
    database_url: str = "sqlite:///./data/fieldsync.db"

    # Business records exchanged with peers (defaults to database_url)
    records_database_url: Optional[str] = None

    # Encryption (validated at startup by EncryptionService)
    encryption_key: Optional[str] = None

    # Per-organization file trees
    file_storage_path: str = "./data/files"

    # Remote peers
    sync_timeout_seconds: float = 30.0
    sync_retry_attempts: int = 1
    sync_retry_max_wait: float = 10.0

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
