"""Shared service wiring for the API routers."""

from functools import lru_cache

from fastapi import Depends

from fieldsync.config import settings
from fieldsync.database.database import Base, SessionLocal, create_sync_engine, engine
from fieldsync.services.configuration_service import ConfigurationService
from fieldsync.services.conflict_resolver import ConflictResolver
from fieldsync.services.connection_tester import ConnectionTester
from fieldsync.services.encryption_service import EncryptionService
from fieldsync.services.file_store import FileStore
from fieldsync.services.orchestrator import SyncOrchestrator
from fieldsync.services.record_source import RecordSource, SqlAlchemyRecordSource


@lru_cache()
def get_record_source() -> RecordSource:
    """Business records; the sync engine's own tables are never synchronized."""
    if settings.records_database_url:
        records_engine = create_sync_engine(settings.records_database_url)
    else:
        records_engine = engine
    return SqlAlchemyRecordSource(records_engine, exclude=Base.metadata.tables.keys())


@lru_cache()
def get_file_store() -> FileStore:
    return FileStore(settings.file_storage_path)


def get_configuration_service() -> ConfigurationService:
    """Get configuration service instance."""
    return ConfigurationService(EncryptionService())


def get_connection_tester() -> ConnectionTester:
    return ConnectionTester()


def get_orchestrator(
    configuration_service: ConfigurationService = Depends(get_configuration_service),
    record_source: RecordSource = Depends(get_record_source),
    file_store: FileStore = Depends(get_file_store),
) -> SyncOrchestrator:
    """Get sync orchestrator; background runs open their own sessions."""
    return SyncOrchestrator(SessionLocal, record_source, file_store, configuration_service)


def get_conflict_resolver(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> ConflictResolver:
    return orchestrator.resolver

