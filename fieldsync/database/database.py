"""Database configuration and session management."""

import os
import logging
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from fieldsync.config import settings

logger = logging.getLogger(__name__)


def create_sync_engine(database_url: str) -> Engine:
    """Create an engine, enabling foreign keys for SQLite connections."""
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    if is_sqlite and url.database and url.database != ":memory:":
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# Create SQLAlchemy engine
engine = create_sync_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create declarative base for models
Base = declarative_base()


def get_db():
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Initialize database tables.

    Creates all sync tables if they don't exist and applies column
    migrations to databases created by older releases. Safe to call
    multiple times.
    """
    # Import all models to ensure they are registered with Base
    from fieldsync.models import SyncConfiguration, SyncHistory, SyncConflict, SyncRecordState

    bind = bind or engine
    logger.info("Initializing database...")

    inspector = inspect(bind)
    existing_tables = inspector.get_table_names()

    if not existing_tables:
        logger.info("No existing tables found. Creating all tables...")
    else:
        logger.info(f"Found existing tables: {existing_tables}")

    Base.metadata.create_all(bind=bind)

    if existing_tables:
        logger.info("Running database migrations...")
        from fieldsync.database.migrations import migrate_database
        db = sessionmaker(bind=bind)()
        try:
            migrate_database(db)
        finally:
            db.close()

    created_tables = inspect(bind).get_table_names()
    logger.info(f"Database initialized with tables: {created_tables}")
