"""Sync history database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Float, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from fieldsync.database.database import Base

TERMINAL_STATUSES = ("completed", "failed", "conflict")


class SyncHistory(Base):
    """Audit record of one sync run attempt."""

    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, index=True)
    configuration_id = Column(
        Integer,
        ForeignKey("sync_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sync_type = Column(String, nullable=False)  # database, files, both
    sync_direction = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    total_records = Column(Integer, nullable=False, default=0)
    records_synced = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    conflicts_detected = Column(Integer, nullable=False, default=0)
    total_files = Column(Integer, nullable=False, default=0)
    files_synced = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    configuration = relationship("SyncConfiguration", back_populates="history")
    conflicts = relationship(
        "SyncConflict",
        back_populates="history",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("sync_type IN ('database', 'files', 'both')", name='ck_history_sync_type'),
        CheckConstraint(
            "status IN ('pending', 'in-progress', 'completed', 'failed', 'conflict')",
            name='ck_history_status',
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<SyncHistory(id={self.id}, status={self.status})>"
