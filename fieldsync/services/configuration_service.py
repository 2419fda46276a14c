"""Configuration service for managing remote sync peers."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from fieldsync.models.sync_configuration import SyncConfiguration
from fieldsync.services.encryption_service import EncryptionService
from fieldsync.services.errors import ConfigurationError
from fieldsync.services.remote_client import RemoteSyncClient

logger = logging.getLogger(__name__)

SYNC_DIRECTIONS = ("one-way", "bidirectional")
EXPORT_FORMATS = ("sql", "csv")
CONFLICT_POLICIES = ("manual", "auto-local", "auto-remote")

# Plain columns settable through create/update
SETTABLE_FIELDS = (
    "server_name",
    "server_url",
    "username",
    "organization_id",
    "sync_direction",
    "sync_database",
    "sync_files",
    "export_format",
    "conflict_resolution",
    "use_timestamp_comparison",
    "use_checksum_comparison",
    "is_active",
)


@dataclass
class PeerCredentials:
    """Decrypted credentials for talking to a peer."""

    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key) or bool(self.username and self.password)


def validate_server_url(server_url: Optional[str]) -> str:
    """Return the normalized URL or raise ConfigurationError."""
    if not server_url or not server_url.strip():
        raise ConfigurationError("serverUrl is required")
    parsed = urlparse(server_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"serverUrl must be an absolute http(s) URL, got '{server_url}'")
    return server_url.strip().rstrip('/')


class ConfigurationService:
    """Create, read, update and delete sync configurations."""

    def __init__(self, encryption_service: EncryptionService):
        """Initialize configuration service.

        Args:
            encryption_service: Service for encrypting/decrypting peer secrets.
        """
        self.encryption_service = encryption_service

    def _validate(self, config: SyncConfiguration) -> None:
        if not config.server_name or not config.server_name.strip():
            raise ConfigurationError("serverName is required")
        config.server_name = config.server_name.strip()
        config.server_url = validate_server_url(config.server_url)

        if config.sync_direction not in SYNC_DIRECTIONS:
            raise ConfigurationError(f"syncDirection must be one of {', '.join(SYNC_DIRECTIONS)}")
        if config.export_format not in EXPORT_FORMATS:
            raise ConfigurationError(f"exportFormat must be one of {', '.join(EXPORT_FORMATS)}")
        if config.conflict_resolution not in CONFLICT_POLICIES:
            raise ConfigurationError(f"conflictResolution must be one of {', '.join(CONFLICT_POLICIES)}")

        if not self.get_credentials(config).is_complete:
            raise ConfigurationError("An API key or a username and password is required")

    def create_configuration(
        self,
        db: Session,
        api_key: Optional[str] = None,
        password: Optional[str] = None,
        **fields: Any,
    ) -> SyncConfiguration:
        """Create a configuration.

        Raises:
            ConfigurationError: If required fields are missing or invalid.
        """
        unknown = set(fields) - set(SETTABLE_FIELDS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        values = {key: value for key, value in fields.items() if value is not None}
        config = SyncConfiguration(**values)
        # Column defaults only apply at flush; validation needs them now
        for column in SyncConfiguration.__table__.columns:
            if getattr(config, column.key) is None and column.default is not None and column.default.is_scalar:
                setattr(config, column.key, column.default.arg)
        if config.username is not None and not config.username.strip():
            config.username = None

        config.api_key_encrypted = self.encryption_service.encrypt_secret(api_key)
        config.password_encrypted = self.encryption_service.encrypt_secret(password)
        self._validate(config)

        db.add(config)
        db.commit()
        db.refresh(config)
        logger.info(f"Sync configuration '{config.server_name}' created (id {config.id})")
        return config

    def update_configuration(
        self,
        db: Session,
        configuration_id: int,
        api_key: Optional[str] = None,
        password: Optional[str] = None,
        **fields: Any,
    ) -> Optional[SyncConfiguration]:
        """Update a configuration.

        Fields passed as None are left unchanged. Blank `api_key` or
        `password` values keep the stored secret; a secret is only replaced
        by an explicit new value.

        Returns:
            The updated configuration, or None if it does not exist.

        Raises:
            ConfigurationError: If the result would be invalid.
        """
        config = self.get_configuration(db, configuration_id)
        if not config:
            return None

        unknown = set(fields) - set(SETTABLE_FIELDS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        for key, value in fields.items():
            if value is not None:
                setattr(config, key, value)

        if api_key and api_key.strip():
            config.api_key_encrypted = self.encryption_service.encrypt(api_key)
        if password and password.strip():
            config.password_encrypted = self.encryption_service.encrypt(password)

        try:
            self._validate(config)
        except ConfigurationError:
            db.rollback()
            raise

        db.commit()
        db.refresh(config)
        logger.info(f"Sync configuration {configuration_id} updated")
        return config

    def delete_configuration(self, db: Session, configuration_id: int) -> bool:
        """Delete a configuration with its history, conflicts and baselines."""
        config = self.get_configuration(db, configuration_id)
        if not config:
            return False

        db.delete(config)
        db.commit()
        logger.info(f"Sync configuration {configuration_id} deleted")
        return True

    def list_configurations(self, db: Session) -> List[SyncConfiguration]:
        return db.query(SyncConfiguration).order_by(SyncConfiguration.id).all()

    def get_configuration(self, db: Session, configuration_id: int) -> Optional[SyncConfiguration]:
        return db.query(SyncConfiguration).filter(SyncConfiguration.id == configuration_id).first()

    def get_credentials(self, config: SyncConfiguration) -> PeerCredentials:
        """Decrypt the secrets of a configuration for outbound requests."""
        return PeerCredentials(
            api_key=self.encryption_service.decrypt_secret(config.api_key_encrypted),
            username=config.username,
            password=self.encryption_service.decrypt_secret(config.password_encrypted),
        )

    def client_for(self, config: SyncConfiguration, **kwargs: Any) -> RemoteSyncClient:
        """Build an (unopened) client for a configuration's peer."""
        credentials = self.get_credentials(config)
        return RemoteSyncClient(
            config.server_url,
            api_key=credentials.api_key,
            username=credentials.username,
            password=credentials.password,
            **kwargs,
        )

    def to_dict(self, config: SyncConfiguration) -> Dict[str, Any]:
        """Public view of a configuration. Secrets are reported as flags only."""
        return {
            "id": config.id,
            "server_name": config.server_name,
            "server_url": config.server_url,
            "username": config.username,
            "has_api_key": config.has_api_key,
            "has_password": config.has_password,
            "organization_id": config.organization_id,
            "sync_direction": config.sync_direction,
            "sync_database": config.sync_database,
            "sync_files": config.sync_files,
            "export_format": config.export_format,
            "conflict_resolution": config.conflict_resolution,
            "use_timestamp_comparison": config.use_timestamp_comparison,
            "use_checksum_comparison": config.use_checksum_comparison,
            "is_active": config.is_active,
            "last_sync_at": config.last_sync_at,
            "created_at": config.created_at,
            "updated_at": config.updated_at,
        }
