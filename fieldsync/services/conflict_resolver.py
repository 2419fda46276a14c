"""Conflict resolver: applies a resolution decision to a detected conflict."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from fieldsync.models.sync_configuration import SyncConfiguration
from fieldsync.models.sync_conflict import RESOLUTIONS, SyncConflict
from fieldsync.services.baselines import save_baseline
from fieldsync.services.checksum import checksum_record, normalize_record
from fieldsync.services.errors import ConfigurationError
from fieldsync.services.exporter import upsert_statement
from fieldsync.services.record_source import RecordSource
from fieldsync.services.remote_client import RemoteSyncClient

logger = logging.getLogger(__name__)

POLICY_RESOLUTIONS = {
    "auto-local": "resolved-local",
    "auto-remote": "resolved-remote",
}


class ConflictResolver:
    """Overwrites the losing side of a conflict with the winning snapshot.

    * resolved-local: the captured local snapshot is written to the remote.
    * resolved-remote: the captured remote snapshot is written locally.
    * resolved-merged: an explicit merged payload is written to both sides.

    Everything needed comes from the conflict record itself; neither side
    is re-queried.
    """

    def __init__(
        self,
        record_source: RecordSource,
        client_factory: Callable[[SyncConfiguration], RemoteSyncClient],
    ):
        self.record_source = record_source
        self.client_factory = client_factory

    def get_conflict(self, db: Session, conflict_id: int) -> Optional[SyncConflict]:
        return db.query(SyncConflict).filter(SyncConflict.id == conflict_id).first()

    async def _write_remote(
        self,
        config: SyncConfiguration,
        conflict: SyncConflict,
        data: Dict[str, Any],
        client: Optional[RemoteSyncClient],
    ) -> None:
        spec = self.record_source.table_spec(conflict.table_name)
        statement = upsert_statement(spec, self.record_source.coerce_record(conflict.table_name, data))
        body = {"organizationId": config.organization_id, "format": "sql", "statements": [statement]}
        if client is not None:
            await client.apply_database(body)
            return
        async with self.client_factory(config) as own_client:
            await own_client.apply_database(body)

    def _merged_record(self, conflict: SyncConflict, merged_data: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize a merged payload, pinning it to the conflicted record."""
        primary_key = self.record_source.table_spec(conflict.table_name).primary_key
        merged = normalize_record(merged_data)
        key = merged.get(primary_key)
        if key is None:
            snapshot = conflict.local_data or conflict.remote_data or {}
            merged[primary_key] = snapshot.get(primary_key, conflict.record_id)
        elif str(key) != conflict.record_id:
            raise ConfigurationError(
                f"mergedData {primary_key} {key!r} does not match conflicted record {conflict.record_id!r}"
            )
        return merged

    async def resolve(
        self,
        db: Session,
        conflict_id: int,
        resolution: str,
        merged_data: Optional[Dict[str, Any]] = None,
        client: Optional[RemoteSyncClient] = None,
    ) -> Optional[SyncConflict]:
        """Resolve a conflict.

        Resolving an already-resolved conflict is a no-op that returns the
        existing resolution.

        Args:
            db: Database session.
            conflict_id: Conflict ID.
            resolution: resolved-local, resolved-remote or resolved-merged.
            merged_data: Payload for resolved-merged.
            client: Open client to reuse for remote writes.

        Returns:
            The conflict, or None if it does not exist.

        Raises:
            ConfigurationError: If the resolution is invalid or mergedData names another record.
            SyncConnectionError: If the remote write fails.
            ApplyError: If the remote rejects the write.
        """
        conflict = self.get_conflict(db, conflict_id)
        if not conflict:
            return None

        if conflict.is_resolved:
            logger.info(f"Conflict {conflict_id} already {conflict.status}; nothing to do")
            return conflict

        if resolution not in RESOLUTIONS:
            raise ConfigurationError(f"resolution must be one of {', '.join(RESOLUTIONS)}")
        if resolution == "resolved-merged" and not merged_data:
            raise ConfigurationError("mergedData is required for resolved-merged")

        config = conflict.history.configuration

        if resolution == "resolved-remote":
            self.record_source.write_record(conflict.table_name, conflict.remote_data)
            winning_checksum = conflict.remote_checksum
        elif resolution == "resolved-local":
            await self._write_remote(config, conflict, conflict.local_data, client)
            winning_checksum = conflict.local_checksum
        else:
            merged = self._merged_record(conflict, merged_data)
            await self._write_remote(config, conflict, merged, client)
            self.record_source.write_record(conflict.table_name, merged)
            winning_checksum = checksum_record(merged)

        conflict.status = resolution
        conflict.resolved_at = datetime.utcnow()
        save_baseline(db, config.id, conflict.table_name, conflict.record_id, winning_checksum)
        db.commit()
        db.refresh(conflict)

        logger.info(f"Conflict {conflict_id} ({conflict.table_name} #{conflict.record_id}) {resolution}")
        return conflict
