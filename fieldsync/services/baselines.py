"""Per-record checksums last applied on both sides of a configuration."""

from datetime import datetime
from typing import Dict

from sqlalchemy.orm import Session

from fieldsync.models.sync_record_state import SyncRecordState


def load_baselines(db: Session, configuration_id: int, table_name: str) -> Dict[str, str]:
    """Return `{record_id: checksum}` for one table."""
    rows = db.query(SyncRecordState).filter(
        SyncRecordState.configuration_id == configuration_id,
        SyncRecordState.table_name == table_name,
    ).all()
    return {row.record_id: row.checksum for row in rows}


def save_baseline(db: Session, configuration_id: int, table_name: str, record_id: str, checksum: str) -> None:
    """Record a checksum as applied on both sides. Caller commits."""
    state = db.query(SyncRecordState).filter(
        SyncRecordState.configuration_id == configuration_id,
        SyncRecordState.table_name == table_name,
        SyncRecordState.record_id == record_id,
    ).first()
    if state is None:
        state = SyncRecordState(
            configuration_id=configuration_id,
            table_name=table_name,
            record_id=record_id,
        )
        db.add(state)
    state.checksum = checksum
    state.synced_at = datetime.utcnow()


def drop_baseline(db: Session, configuration_id: int, table_name: str, record_id: str) -> None:
    """Forget a record's baseline after it was deleted. Caller commits."""
    db.query(SyncRecordState).filter(
        SyncRecordState.configuration_id == configuration_id,
        SyncRecordState.table_name == table_name,
        SyncRecordState.record_id == record_id,
    ).delete(synchronize_session=False)
