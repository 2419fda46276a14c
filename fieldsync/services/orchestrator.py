"""Sync orchestrator: drives one sync run from export to history."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from fieldsync.models.sync_configuration import SyncConfiguration
from fieldsync.models.sync_conflict import SyncConflict
from fieldsync.models.sync_history import SyncHistory
from fieldsync.services.baselines import drop_baseline, load_baselines, save_baseline
from fieldsync.services.checksum import checksum_record
from fieldsync.services.configuration_service import ConfigurationService
from fieldsync.services.conflict_detector import ConflictDetector, ReconcileResult
from fieldsync.services.conflict_resolver import POLICY_RESOLUTIONS, ConflictResolver
from fieldsync.services.errors import ApplyError, ConfigurationError
from fieldsync.services.exporter import DatabaseExporter, DatabasePayload
from fieldsync.services.file_store import FileStore
from fieldsync.services.file_transfer import FileTransferAgent, FileTransferPlan
from fieldsync.services.record_source import RecordSource, TableSpec
from fieldsync.services.remote_client import RemoteSyncClient
from fieldsync.services.run_registry import RunRegistry, run_registry

logger = logging.getLogger(__name__)

SYNC_TYPES = ("database", "files", "both")


class RunState(str, Enum):
    IDLE = "idle"
    EXPORTING = "exporting"
    TRANSMITTING = "transmitting"
    APPLYING = "applying"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncRun:
    """An accepted run holding its configuration's lease."""

    configuration_id: int
    history_id: int
    sync_type: str
    token: str
    started_at: datetime
    state: RunState = RunState.IDLE


@dataclass
class RunOutcome:
    total_records: int = 0
    records_synced: int = 0
    records_failed: int = 0
    conflicts_detected: int = 0
    pending_conflicts: int = 0
    total_files: int = 0
    files_synced: int = 0
    warnings: List[str] = field(default_factory=list)


class SyncOrchestrator:
    """Runs the sync state machine for one configuration at a time.

    States: idle -> exporting -> transmitting -> applying -> reconciling ->
    completed | failed. Each configuration holds at most one active run;
    the lease is taken when the run is accepted and released when it
    reaches a terminal state, whatever the outcome.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        record_source: RecordSource,
        file_store: FileStore,
        configuration_service: ConfigurationService,
        client_factory: Optional[Callable[[SyncConfiguration], RemoteSyncClient]] = None,
        exporter: Optional[DatabaseExporter] = None,
        registry: Optional[RunRegistry] = None,
        resolver: Optional[ConflictResolver] = None,
    ):
        """Initialize the orchestrator.

        Args:
            session_factory: Creates sessions for background runs.
            record_source: Local business records.
            file_store: Local per-organization files.
            configuration_service: Configuration store.
            client_factory: Builds a client for a configuration's peer.
            exporter: Database exporter.
            registry: Lease registry (defaults to the process-wide one).
            resolver: Conflict resolver used for automatic policies.
        """
        self.session_factory = session_factory
        self.record_source = record_source
        self.file_agent = FileTransferAgent(file_store)
        self.configuration_service = configuration_service
        self.client_factory = client_factory or configuration_service.client_for
        self.exporter = exporter or DatabaseExporter()
        self.registry = registry or run_registry
        self.resolver = resolver or ConflictResolver(record_source, self.client_factory)

    @staticmethod
    def effective_scope(config: SyncConfiguration, sync_type: str) -> Tuple[bool, bool]:
        """Intersect the requested sync type with the configuration's scope flags.

        Returns:
            (sync database, sync files)

        Raises:
            ConfigurationError: If nothing remains to sync.
        """
        if sync_type not in SYNC_TYPES:
            raise ConfigurationError(f"syncType must be one of {', '.join(SYNC_TYPES)}")
        do_database = sync_type in ("database", "both") and bool(config.sync_database)
        do_files = sync_type in ("files", "both") and bool(config.sync_files)
        if not do_database and not do_files:
            raise ConfigurationError(
                f"Configuration {config.id} does not allow a '{sync_type}' sync"
            )
        return do_database, do_files

    def start_run(self, db: Session, configuration_id: int, sync_type: str) -> SyncRun:
        """Accept a run: validate, take the lease, record pending history.

        Raises:
            ConfigurationError: If the configuration is missing, inactive or incomplete.
            SyncInProgressError: If the configuration already has an active run.
        """
        config = self.configuration_service.get_configuration(db, configuration_id)
        if not config:
            raise ConfigurationError(f"Sync configuration {configuration_id} not found")
        if not config.is_active:
            raise ConfigurationError(f"Sync configuration {configuration_id} is inactive")
        if not self.configuration_service.get_credentials(config).is_complete:
            raise ConfigurationError(f"Sync configuration {configuration_id} has no usable credentials")
        self.effective_scope(config, sync_type)

        token = self.registry.acquire(configuration_id)
        try:
            history = SyncHistory(
                configuration_id=configuration_id,
                sync_type=sync_type,
                sync_direction=config.sync_direction,
                status="pending",
                started_at=datetime.utcnow(),
            )
            db.add(history)
            db.commit()
            db.refresh(history)
        except Exception:
            db.rollback()
            self.registry.release(configuration_id, token)
            raise

        run = SyncRun(
            configuration_id=configuration_id,
            history_id=history.id,
            sync_type=sync_type,
            token=token,
            started_at=history.started_at,
        )
        self.registry.attach(configuration_id, token, run)
        logger.info(f"Accepted {sync_type} sync run {history.id} for configuration {configuration_id}")
        return run

    def _advance(self, run: SyncRun, state: RunState) -> None:
        logger.info(f"Sync run {run.history_id}: {run.state.value} -> {state.value}")
        run.state = state

    async def execute_run(self, run: SyncRun) -> SyncHistory:
        """Drive an accepted run to a terminal state.

        Never raises for run failures; they are recorded on the history
        record. The lease is always released.
        """
        db = self.session_factory()
        try:
            history = db.query(SyncHistory).filter(SyncHistory.id == run.history_id).first()
            config = history.configuration
            history.status = "in-progress"
            db.commit()

            outcome = RunOutcome()
            try:
                await self._drive(db, run, config, history, outcome)
            except Exception as e:
                db.rollback()
                if isinstance(e, ApplyError):
                    outcome.records_failed = outcome.total_records
                    outcome.records_synced = 0
                logger.error(f"Sync run {run.history_id} failed: {e}")
                self._finish(db, run, history, config, "failed", outcome, error=str(e) or type(e).__name__)
            else:
                status = "conflict" if outcome.pending_conflicts else "completed"
                self._finish(db, run, history, config, status, outcome)

            db.refresh(history)
            return history
        finally:
            self.registry.release(run.configuration_id, run.token)
            db.close()

    async def execute(self, db: Session, configuration_id: int, sync_type: str) -> SyncHistory:
        """Accept and run synchronously; returns the terminal history."""
        run = self.start_run(db, configuration_id, sync_type)
        await self.execute_run(run)
        db.expire_all()
        return self.get_sync_record(db, run.history_id)

    async def _drive(
        self,
        db: Session,
        run: SyncRun,
        config: SyncConfiguration,
        history: SyncHistory,
        outcome: RunOutcome,
    ) -> None:
        do_database, do_files = self.effective_scope(config, run.sync_type)
        bidirectional = config.sync_direction == "bidirectional"

        async with self.client_factory(config) as client:
            self._advance(run, RunState.EXPORTING)
            payload: Optional[DatabasePayload] = None
            reconcile: Optional[ReconcileResult] = None
            file_plan: Optional[FileTransferPlan] = None

            if do_database:
                tables = self.record_source.tables()
                changes = self.record_source.pending_changes(config.last_sync_at, config.organization_id)
                if bidirectional:
                    # Detect against the pre-push remote state; conflicting records are not pushed
                    reconcile = await self._detect(db, client, config, tables)
                    withheld = reconcile.conflict_keys()
                    changes = [c for c in changes if (c.table, c.record_id) not in withheld]
                payload = self.exporter.export(config.export_format, tables, changes)
                outcome.total_records = payload.record_count

            if do_files:
                file_plan = await self.file_agent.prepare(client, config.organization_id)
                outcome.total_files = file_plan.total
                outcome.files_synced = len(file_plan.skipped)

            send_database = payload is not None and not payload.is_empty
            send_files = file_plan is not None and not file_plan.is_empty

            if send_database or send_files:
                self._advance(run, RunState.TRANSMITTING)
                if send_database and send_files:
                    request = client.receive(
                        payload.to_json(config.organization_id),
                        file_plan.uploads(),
                        file_plan.checksums(),
                    )
                elif send_database:
                    request = client.apply_database(payload.to_json(config.organization_id))
                else:
                    request = client.upload_files(config.organization_id, file_plan.uploads(), file_plan.checksums())

                # The remote applies inside the request and answers with the outcome
                self._advance(run, RunState.APPLYING)
                response = await request

                if send_database:
                    database_response = response.get("database", response)
                    outcome.records_synced = int(database_response.get("recordsApplied", payload.record_count))
                    self._record_pushed(db, config, payload)
                if send_files:
                    transfer = self.file_agent.verify(file_plan, response)
                    outcome.files_synced = transfer.files_synced
                    if transfer.mismatched:
                        outcome.warnings.append(f"Checksum mismatch for: {', '.join(transfer.mismatched)}")
            elif reconcile is None:
                logger.info(f"Sync run {run.history_id}: nothing to send")
                return

            if reconcile is not None:
                self._advance(run, RunState.RECONCILING)
                await self._reconcile(db, client, config, history, reconcile, outcome)

    async def _detect(
        self,
        db: Session,
        client: RemoteSyncClient,
        config: SyncConfiguration,
        tables: List[TableSpec],
    ) -> ReconcileResult:
        remote_records = await client.fetch_records(config.organization_id, tables)
        combined = ReconcileResult(held=self._open_conflict_keys(db, config.id))
        for spec in tables:
            detector = ConflictDetector(
                use_timestamp_comparison=config.use_timestamp_comparison,
                use_checksum_comparison=config.use_checksum_comparison,
                last_sync_at=config.last_sync_at,
                timestamp_column=spec.timestamp_column or "updated_at",
            )
            result = detector.reconcile(
                spec,
                self.record_source.fetch_records(spec.name, config.organization_id),
                remote_records.get(spec.name, []),
                load_baselines(db, config.id, spec.name),
            )
            combined.conflicts.extend(c for c in result.conflicts if (c.table, c.record_id) not in combined.held)
            combined.remote_updates.extend(u for u in result.remote_updates if (u.table, u.record_id) not in combined.held)
            combined.in_sync.extend(result.in_sync)
        return combined

    def _open_conflict_keys(self, db: Session, configuration_id: int) -> Set[Tuple[str, str]]:
        rows = (
            db.query(SyncConflict.table_name, SyncConflict.record_id)
            .join(SyncHistory, SyncConflict.sync_history_id == SyncHistory.id)
            .filter(SyncHistory.configuration_id == configuration_id, SyncConflict.status == "pending")
            .all()
        )
        return {(table, record_id) for table, record_id in rows}

    def _record_pushed(self, db: Session, config: SyncConfiguration, payload: DatabasePayload) -> None:
        for change in payload.changes:
            if change.operation == "delete":
                drop_baseline(db, config.id, change.table, change.record_id)
            else:
                save_baseline(db, config.id, change.table, change.record_id, checksum_record(change.data))
        db.commit()

    async def _reconcile(
        self,
        db: Session,
        client: RemoteSyncClient,
        config: SyncConfiguration,
        history: SyncHistory,
        reconcile: ReconcileResult,
        outcome: RunOutcome,
    ) -> None:
        for table, record_id, checksum in reconcile.in_sync:
            save_baseline(db, config.id, table, record_id, checksum)

        for update in reconcile.remote_updates:
            self.record_source.write_record(update.table, update.data)
            save_baseline(db, config.id, update.table, update.record_id, update.checksum)
        outcome.total_records += len(reconcile.remote_updates)
        outcome.records_synced += len(reconcile.remote_updates)

        conflicts = []
        for detected in reconcile.conflicts:
            conflict = SyncConflict(
                sync_history_id=history.id,
                table_name=detected.table,
                record_id=detected.record_id,
                conflict_type=detected.conflict_type,
                local_data=detected.local_data,
                remote_data=detected.remote_data,
                local_timestamp=detected.local_timestamp,
                remote_timestamp=detected.remote_timestamp,
                local_checksum=detected.local_checksum,
                remote_checksum=detected.remote_checksum,
                status="pending",
            )
            db.add(conflict)
            conflicts.append(conflict)
        db.commit()
        outcome.conflicts_detected = len(conflicts)

        resolution = POLICY_RESOLUTIONS.get(config.conflict_resolution)
        if resolution:
            for conflict in conflicts:
                await self.resolver.resolve(db, conflict.id, resolution, client=client)

        outcome.pending_conflicts = sum(1 for c in conflicts if not c.is_resolved)
        if conflicts:
            logger.info(
                f"Sync run {history.id}: {len(conflicts)} conflicts, "
                f"{outcome.pending_conflicts} awaiting manual resolution"
            )

    def _finish(
        self,
        db: Session,
        run: SyncRun,
        history: SyncHistory,
        config: SyncConfiguration,
        status: str,
        outcome: RunOutcome,
        error: Optional[str] = None,
    ) -> None:
        """Write the terminal state. History is immutable afterwards."""
        if history.is_terminal:
            raise RuntimeError(f"Sync history {history.id} is already {history.status}")

        completed_at = datetime.utcnow()
        history.status = status
        history.total_records = outcome.total_records
        history.records_synced = outcome.records_synced
        history.records_failed = outcome.records_failed
        history.conflicts_detected = outcome.conflicts_detected
        history.total_files = outcome.total_files
        history.files_synced = outcome.files_synced
        history.completed_at = completed_at
        history.duration_seconds = round((completed_at - history.started_at).total_seconds(), 3)
        history.error_message = error or ("; ".join(outcome.warnings) if outcome.warnings else None)

        if status != "failed":
            config.last_sync_at = history.started_at

        db.commit()
        self._advance(run, RunState.FAILED if status == "failed" else RunState.COMPLETED)
        logger.info(
            f"Sync run {history.id} {status}: {outcome.records_synced}/{outcome.total_records} records, "
            f"{outcome.files_synced}/{outcome.total_files} files, {outcome.conflicts_detected} conflicts"
        )

    def get_sync_status(self) -> List[Dict[str, Any]]:
        """Describe active runs and their current state."""
        now = datetime.utcnow()
        return [
            {
                "configuration_id": run.configuration_id,
                "history_id": run.history_id,
                "sync_type": run.sync_type,
                "state": run.state.value,
                "started_at": run.started_at,
                "duration_seconds": (now - run.started_at).total_seconds(),
            }
            for run in self.registry.runs()
        ]

    def is_sync_in_progress(self, configuration_id: int) -> bool:
        return self.registry.is_active(configuration_id)

    def get_sync_history(
        self,
        db: Session,
        configuration_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncHistory]:
        """Get past runs, most recent first."""
        query = db.query(SyncHistory)
        if configuration_id is not None:
            query = query.filter(SyncHistory.configuration_id == configuration_id)
        return query.order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc()).limit(limit).offset(offset).all()

    def get_sync_record(self, db: Session, history_id: int) -> Optional[SyncHistory]:
        return db.query(SyncHistory).filter(SyncHistory.id == history_id).first()

    def list_conflicts(self, db: Session, status: Optional[str] = "pending") -> List[SyncConflict]:
        """List conflicts, unresolved ones by default; pass None for all."""
        query = db.query(SyncConflict)
        if status:
            query = query.filter(SyncConflict.status == status)
        return query.order_by(SyncConflict.created_at.desc(), SyncConflict.id.desc()).all()
