"""Receiver configuration."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReceiverSettings(BaseSettings):
    """Receiver settings, read from `RECEIVER_*` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RECEIVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database the incoming statements are applied to
    database_url: str = "sqlite:///./data/receiver.db"

    # Where incoming files are stored, one directory per organization
    file_storage_path: str = "./data/received"

    # Credentials accepted from peers
    api_key: Optional[str] = None
    username: Optional[str] = None
    password_hash: Optional[str] = None

    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "INFO"
