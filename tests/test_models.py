"""Test database models and schema."""

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from fieldsync.models import SyncConfiguration, SyncConflict, SyncHistory, SyncRecordState


def make_configuration(db_session, **overrides):
    values = {
        "server_name": "Head office",
        "server_url": "https://sync.example.com",
        "api_key_encrypted": "encrypted_key_123",
    }
    values.update(overrides)
    config = SyncConfiguration(**values)
    db_session.add(config)
    db_session.commit()
    return config


def make_history(db_session, config, **overrides):
    values = {"configuration_id": config.id, "sync_type": "database", "sync_direction": "one-way"}
    values.update(overrides)
    history = SyncHistory(**values)
    db_session.add(history)
    db_session.commit()
    return history


class TestSyncConfigurationModel:

    def test_defaults(self, db_session):
        config = make_configuration(db_session)

        assert config.id is not None
        assert config.organization_id == 1
        assert config.sync_direction == "one-way"
        assert config.sync_database is True
        assert config.sync_files is False
        assert config.is_active is True
        assert config.has_api_key is True
        assert config.has_password is False
        assert config.created_at is not None

    def test_direction_constraint(self, db_session):
        with pytest.raises(IntegrityError):
            make_configuration(db_session, sync_direction="sideways")


class TestSyncHistoryModel:

    def test_pending_by_default(self, db_session):
        history = make_history(db_session, make_configuration(db_session))

        assert history.status == "pending"
        assert history.total_records == 0
        assert history.is_terminal is False

    def test_terminal_statuses(self, db_session):
        history = make_history(db_session, make_configuration(db_session), status="conflict", completed_at=datetime.utcnow())

        assert history.is_terminal is True

    def test_status_constraint(self, db_session):
        with pytest.raises(IntegrityError):
            make_history(db_session, make_configuration(db_session), status="finished")


class TestSyncConflictModel:

    def test_create_conflict(self, db_session):
        history = make_history(db_session, make_configuration(db_session))
        conflict = SyncConflict(
            sync_history_id=history.id,
            table_name="customers",
            record_id="1",
            conflict_type="checksum-mismatch",
            local_data={"id": 1, "name": "Local"},
            remote_data={"id": 1, "name": "Remote"},
        )
        db_session.add(conflict)
        db_session.commit()

        assert conflict.status == "pending"
        assert conflict.is_resolved is False
        assert history.conflicts[0].local_data["name"] == "Local"


class TestCascades:

    def test_deleting_configuration_removes_history_conflicts_and_baselines(self, db_session):
        config = make_configuration(db_session)
        history = make_history(db_session, config)
        db_session.add(SyncConflict(
            sync_history_id=history.id,
            table_name="customers",
            record_id="1",
            conflict_type="timestamp-mismatch",
            local_data={},
            remote_data={},
        ))
        db_session.add(SyncRecordState(configuration_id=config.id, table_name="customers", record_id="1", checksum="abc"))
        db_session.commit()

        db_session.delete(config)
        db_session.commit()

        assert db_session.query(SyncHistory).count() == 0
        assert db_session.query(SyncConflict).count() == 0
        assert db_session.query(SyncRecordState).count() == 0

    def test_baseline_unique_per_record(self, db_session):
        config = make_configuration(db_session)
        db_session.add(SyncRecordState(configuration_id=config.id, table_name="customers", record_id="1", checksum="a"))
        db_session.add(SyncRecordState(configuration_id=config.id, table_name="customers", record_id="1", checksum="b"))

        with pytest.raises(IntegrityError):
            db_session.commit()
