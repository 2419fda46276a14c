"""Tests for database initialization and column migrations."""

from sqlalchemy import inspect, text

from fieldsync.database.database import create_sync_engine, init_db
from fieldsync.database.migrations import get_migration_status
from sqlalchemy.orm import sessionmaker


def test_init_db_is_idempotent(tmp_path):
    engine = create_sync_engine(f"sqlite:///{tmp_path}/sync.db")

    init_db(bind=engine)
    init_db(bind=engine)

    tables = set(inspect(engine).get_table_names())
    assert {"sync_configurations", "sync_history", "sync_conflicts", "sync_record_states"} <= tables


def test_missing_columns_are_added(tmp_path):
    engine = create_sync_engine(f"sqlite:///{tmp_path}/old.db")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE sync_configurations ("
            "id INTEGER PRIMARY KEY, server_name VARCHAR NOT NULL, server_url VARCHAR NOT NULL, "
            "api_key_encrypted VARCHAR, username VARCHAR, password_encrypted VARCHAR, "
            "sync_direction VARCHAR NOT NULL, sync_database BOOLEAN NOT NULL, sync_files BOOLEAN NOT NULL, "
            "export_format VARCHAR NOT NULL, conflict_resolution VARCHAR NOT NULL, "
            "use_timestamp_comparison BOOLEAN NOT NULL, use_checksum_comparison BOOLEAN NOT NULL, "
            "is_active BOOLEAN NOT NULL, last_sync_at DATETIME, created_at DATETIME, updated_at DATETIME)"
        ))
        conn.execute(text(
            "INSERT INTO sync_configurations (id, server_name, server_url, sync_direction, sync_database, "
            "sync_files, export_format, conflict_resolution, use_timestamp_comparison, "
            "use_checksum_comparison, is_active) VALUES (1, 'Old', 'http://old.test', 'one-way', 1, 0, "
            "'sql', 'manual', 1, 1, 1)"
        ))

    init_db(bind=engine)

    columns = [c["name"] for c in inspect(engine).get_columns("sync_configurations")]
    assert "organization_id" in columns
    with engine.connect() as conn:
        assert conn.execute(text("SELECT organization_id FROM sync_configurations")).scalar() == 1

    db = sessionmaker(bind=engine)()
    try:
        status = get_migration_status(db)
    finally:
        db.close()
    assert "sync_configurations.organization_id" in status["migrations_applied"]
    assert "sync_history.duration_seconds" in status["migrations_applied"]
