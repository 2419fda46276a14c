"""Sync configuration database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from fieldsync.database.database import Base


class SyncConfiguration(Base):
    """One remote peer this installation synchronizes with."""

    __tablename__ = "sync_configurations"

    id = Column(Integer, primary_key=True, index=True)
    server_name = Column(String, nullable=False)
    server_url = Column(String, nullable=False)
    api_key_encrypted = Column(String, nullable=True)
    username = Column(String, nullable=True)
    password_encrypted = Column(String, nullable=True)
    organization_id = Column(Integer, nullable=False, default=1)
    sync_direction = Column(String, nullable=False, default="one-way")
    sync_database = Column(Boolean, nullable=False, default=True)
    sync_files = Column(Boolean, nullable=False, default=False)
    export_format = Column(String, nullable=False, default="sql")
    conflict_resolution = Column(String, nullable=False, default="manual")
    use_timestamp_comparison = Column(Boolean, nullable=False, default=True)
    use_checksum_comparison = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    history = relationship(
        "SyncHistory",
        back_populates="configuration",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("sync_direction IN ('one-way', 'bidirectional')", name='ck_sync_direction'),
        CheckConstraint("export_format IN ('sql', 'csv')", name='ck_export_format'),
        CheckConstraint(
            "conflict_resolution IN ('manual', 'auto-local', 'auto-remote')",
            name='ck_conflict_resolution',
        ),
    )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key_encrypted)

    @property
    def has_password(self) -> bool:
        return bool(self.password_encrypted)

    def __repr__(self):
        return f"<SyncConfiguration(id={self.id}, server={self.server_name!r})>"
