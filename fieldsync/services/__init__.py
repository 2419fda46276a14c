"""Services package."""

from fieldsync.services.configuration_service import ConfigurationService
from fieldsync.services.conflict_detector import ConflictDetector
from fieldsync.services.conflict_resolver import ConflictResolver
from fieldsync.services.connection_tester import ConnectionTester
from fieldsync.services.encryption_service import EncryptionService
from fieldsync.services.exporter import DatabaseExporter
from fieldsync.services.file_store import FileStore
from fieldsync.services.orchestrator import SyncOrchestrator
from fieldsync.services.remote_client import RemoteSyncClient

__all__ = [
    "ConfigurationService",
    "ConflictDetector",
    "ConflictResolver",
    "ConnectionTester",
    "EncryptionService",
    "DatabaseExporter",
    "FileStore",
    "SyncOrchestrator",
    "RemoteSyncClient",
]
