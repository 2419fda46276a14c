"""Sync conflict database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from fieldsync.database.database import Base

CONFLICT_TYPES = ("timestamp-mismatch", "checksum-mismatch", "both-modified")
RESOLUTIONS = ("resolved-local", "resolved-remote", "resolved-merged")


class SyncConflict(Base):
    """A record whose local and remote versions disagree."""

    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, index=True)
    sync_history_id = Column(
        Integer,
        ForeignKey("sync_history.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    table_name = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    conflict_type = Column(String, nullable=False)
    local_data = Column(JSON, nullable=False)
    remote_data = Column(JSON, nullable=False)
    local_timestamp = Column(DateTime, nullable=True)
    remote_timestamp = Column(DateTime, nullable=True)
    local_checksum = Column(String, nullable=True)
    remote_checksum = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    history = relationship("SyncHistory", back_populates="conflicts")

    __table_args__ = (
        CheckConstraint(
            "conflict_type IN ('timestamp-mismatch', 'checksum-mismatch', 'both-modified')",
            name='ck_conflict_type',
        ),
        CheckConstraint(
            "status IN ('pending', 'resolved-local', 'resolved-remote', 'resolved-merged')",
            name='ck_conflict_status',
        ),
        Index('ix_sync_conflicts_record', 'table_name', 'record_id'),
    )

    @property
    def is_resolved(self) -> bool:
        return self.status != "pending"

    def __repr__(self):
        return f"<SyncConflict(table={self.table_name}, record={self.record_id}, status={self.status})>"
