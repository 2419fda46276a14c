"""Shared test fixtures."""

import os
from types import SimpleNamespace

import httpx
import pytest
from cryptography.fernet import Fernet

# Set required environment variables before importing fieldsync modules
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from sqlalchemy.orm import sessionmaker

from fieldsync.database.database import create_sync_engine, init_db
from fieldsync.receiver.app import create_receiver_app
from fieldsync.receiver.auth import hash_password
from fieldsync.receiver.config import ReceiverSettings
from fieldsync.services.configuration_service import ConfigurationService
from fieldsync.services.encryption_service import EncryptionService
from fieldsync.services.file_store import FileStore
from fieldsync.services.orchestrator import SyncOrchestrator
from fieldsync.services.record_source import SqlAlchemyRecordSource
from fieldsync.services.run_registry import RunRegistry

from tests.helpers import PEER_API_KEY, PEER_PASSWORD, PEER_USERNAME, REMOTE_URL, business_metadata


@pytest.fixture
def encryption_service():
    return EncryptionService(Fernet.generate_key().decode())


@pytest.fixture
def configuration_service(encryption_service):
    return ConfigurationService(encryption_service)


@pytest.fixture
def sync_engine(tmp_path):
    engine = create_sync_engine(f"sqlite:///{tmp_path}/sync.db")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def local_engine(tmp_path):
    engine = create_sync_engine(f"sqlite:///{tmp_path}/local.db")
    business_metadata().create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def remote_engine(tmp_path):
    engine = create_sync_engine(f"sqlite:///{tmp_path}/remote.db")
    business_metadata().create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def receiver_settings(tmp_path):
    return ReceiverSettings(
        database_url=f"sqlite:///{tmp_path}/remote.db",
        file_storage_path=str(tmp_path / "remote-files"),
        api_key=PEER_API_KEY,
        username=PEER_USERNAME,
        password_hash=hash_password(PEER_PASSWORD, iterations=1000),
    )


@pytest.fixture
def receiver_app(receiver_settings, remote_engine):
    return create_receiver_app(receiver_settings, engine=remote_engine)


@pytest.fixture
def env(tmp_path, db_session, session_factory, configuration_service, local_engine, remote_engine, receiver_app, receiver_settings):
    """A local sync engine wired to an in-process receiver."""
    transport = httpx.ASGITransport(app=receiver_app)

    def client_factory(config):
        return configuration_service.client_for(config, transport=transport)

    local_files = FileStore(str(tmp_path / "local-files"))
    orchestrator = SyncOrchestrator(
        session_factory,
        SqlAlchemyRecordSource(local_engine),
        local_files,
        configuration_service,
        client_factory=client_factory,
        registry=RunRegistry(),
    )

    def make_config(**fields):
        values = {
            "server_name": "Regional office",
            "server_url": REMOTE_URL,
            "api_key": PEER_API_KEY,
        }
        values.update(fields)
        return configuration_service.create_configuration(db_session, **values)

    return SimpleNamespace(
        db=db_session,
        orchestrator=orchestrator,
        configuration_service=configuration_service,
        local_engine=local_engine,
        remote_engine=remote_engine,
        local_files=local_files,
        remote_files=FileStore(receiver_settings.file_storage_path),
        transport=transport,
        client_factory=client_factory,
        make_config=make_config,
    )
