"""Database models package."""

from fieldsync.models.sync_configuration import SyncConfiguration
from fieldsync.models.sync_history import SyncHistory
from fieldsync.models.sync_conflict import SyncConflict
from fieldsync.models.sync_record_state import SyncRecordState

__all__ = [
    "SyncConfiguration",
    "SyncHistory",
    "SyncConflict",
    "SyncRecordState",
]
