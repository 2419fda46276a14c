"""Conflict detection between local and remote versions of records."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from fieldsync.services.checksum import checksum_record, normalize_record
from fieldsync.services.record_source import TableSpec

logger = logging.getLogger(__name__)


@dataclass
class DetectedConflict:
    """A record changed independently on both sides."""

    table: str
    record_id: str
    conflict_type: str
    local_data: Dict[str, Any]
    remote_data: Dict[str, Any]
    local_checksum: str
    remote_checksum: str
    local_timestamp: Optional[datetime] = None
    remote_timestamp: Optional[datetime] = None


@dataclass
class RemoteUpdate:
    """A remote version to copy into the local store."""

    table: str
    record_id: str
    data: Dict[str, Any]
    checksum: str


@dataclass
class ReconcileResult:
    conflicts: List[DetectedConflict] = field(default_factory=list)
    remote_updates: List[RemoteUpdate] = field(default_factory=list)
    # (table, record_id, checksum) of records identical on both sides
    in_sync: List[Tuple[str, str, str]] = field(default_factory=list)
    # (table, record_id) with an unresolved conflict from an earlier run
    held: Set[Tuple[str, str]] = field(default_factory=set)

    def conflict_keys(self) -> set:
        return {(c.table, c.record_id) for c in self.conflicts} | self.held


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a datetime or ISO string, normalized to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            logger.warning(f"Ignoring unparseable timestamp {value!r}")
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class ConflictDetector:
    """Compares record versions with a configuration's comparison strategy.

    A conflict is raised when the versions differ and at least one enabled
    check reports independent modification:

    * timestamps: both last-modified times are newer than the last
      successful sync;
    * checksums: the baseline checksum (the version last applied on both
      sides) matches neither version.

    The checks are symmetric, so swapping local and remote swaps the
    captured payloads but not the conflict type.
    """

    def __init__(
        self,
        use_timestamp_comparison: bool = True,
        use_checksum_comparison: bool = True,
        last_sync_at: Optional[datetime] = None,
        timestamp_column: str = "updated_at",
    ):
        self.use_timestamp_comparison = use_timestamp_comparison
        self.use_checksum_comparison = use_checksum_comparison
        self.last_sync_at = parse_timestamp(last_sync_at)
        self.timestamp_column = timestamp_column

    def _changed_since_sync(self, timestamp: Optional[datetime]) -> bool:
        return bool(timestamp and self.last_sync_at and timestamp > self.last_sync_at)

    def compare_record(
        self,
        table: str,
        record_id: str,
        local: Dict[str, Any],
        remote: Dict[str, Any],
        baseline: Optional[str] = None,
    ) -> Optional[DetectedConflict]:
        """Return a conflict for one record, or None if the versions agree."""
        local_data = normalize_record(local)
        remote_data = normalize_record(remote)
        local_checksum = checksum_record(local_data)
        remote_checksum = checksum_record(remote_data)
        if local_checksum == remote_checksum:
            return None

        local_ts = parse_timestamp(local.get(self.timestamp_column))
        remote_ts = parse_timestamp(remote.get(self.timestamp_column))

        timestamp_hit = (
            self.use_timestamp_comparison
            and self._changed_since_sync(local_ts)
            and self._changed_since_sync(remote_ts)
        )
        checksum_hit = (
            self.use_checksum_comparison
            and baseline not in (local_checksum, remote_checksum)
        )

        if timestamp_hit and checksum_hit:
            conflict_type = "both-modified"
        elif timestamp_hit:
            conflict_type = "timestamp-mismatch"
        elif checksum_hit:
            conflict_type = "checksum-mismatch"
        else:
            return None

        return DetectedConflict(
            table=table,
            record_id=record_id,
            conflict_type=conflict_type,
            local_data=local_data,
            remote_data=remote_data,
            local_checksum=local_checksum,
            remote_checksum=remote_checksum,
            local_timestamp=local_ts,
            remote_timestamp=remote_ts,
        )

    def _remote_side_changed(self, baseline, local_checksum, local_ts, remote_ts) -> bool:
        if baseline is not None:
            return baseline == local_checksum
        return self._changed_since_sync(remote_ts) and not self._changed_since_sync(local_ts)

    def reconcile(
        self,
        spec: TableSpec,
        local_records: List[Dict[str, Any]],
        remote_records: List[Dict[str, Any]],
        baselines: Optional[Dict[str, str]] = None,
    ) -> ReconcileResult:
        """Compare every record of one table.

        Args:
            spec: Table being compared.
            local_records: Local rows.
            remote_records: Remote rows.
            baselines: `{record_id: checksum}` last applied on both sides.

        Returns:
            Conflicts, remote versions to pull, and records already in sync.
        """
        baselines = baselines or {}
        result = ReconcileResult()
        remote_by_id = {str(r[spec.primary_key]): r for r in remote_records if spec.primary_key in r}

        for local in local_records:
            record_id = str(local[spec.primary_key])
            remote = remote_by_id.pop(record_id, None)
            if remote is None:
                continue

            baseline = baselines.get(record_id)
            conflict = self.compare_record(spec.name, record_id, local, remote, baseline)
            if conflict:
                result.conflicts.append(conflict)
                continue

            local_checksum = checksum_record(local)
            remote_checksum = checksum_record(remote)
            if local_checksum == remote_checksum:
                result.in_sync.append((spec.name, record_id, local_checksum))
            elif self._remote_side_changed(
                baseline,
                local_checksum,
                parse_timestamp(local.get(self.timestamp_column)),
                parse_timestamp(remote.get(self.timestamp_column)),
            ):
                result.remote_updates.append(
                    RemoteUpdate(spec.name, record_id, normalize_record(remote), remote_checksum)
                )

        for record_id, remote in remote_by_id.items():
            remote_checksum = checksum_record(remote)
            if baselines.get(record_id) == remote_checksum:
                # Deleted locally since the last sync
                continue
            result.remote_updates.append(
                RemoteUpdate(spec.name, record_id, normalize_record(remote), remote_checksum)
            )

        if result.conflicts:
            logger.info(f"Detected {len(result.conflicts)} conflicts in {spec.name}")
        return result
