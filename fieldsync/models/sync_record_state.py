"""Sync record baseline database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from fieldsync.database.database import Base


class SyncRecordState(Base):
    """Checksum of a record as last applied on both sides of a configuration."""

    __tablename__ = "sync_record_states"

    id = Column(Integer, primary_key=True, index=True)
    configuration_id = Column(
        Integer,
        ForeignKey("sync_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    table_name = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    checksum = Column(String, nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('configuration_id', 'table_name', 'record_id', name='uq_record_state'),
    )
