"""Sync execution, history and conflict API endpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from fieldsync.api.dependencies import (
    get_configuration_service,
    get_conflict_resolver,
    get_connection_tester,
    get_orchestrator,
)
from fieldsync.database.database import get_db
from fieldsync.services.configuration_service import ConfigurationService, validate_server_url
from fieldsync.services.conflict_resolver import ConflictResolver
from fieldsync.services.connection_tester import ConnectionTester
from fieldsync.services.errors import ApplyError, SyncConnectionError, SyncInProgressError
from fieldsync.services.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TestConnectionRequest(CamelModel):
    """Connection test request. Blank secrets fall back to a stored configuration."""

    server_url: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    configuration_id: Optional[int] = None


class TestConnectionResponse(CamelModel):
    success: bool
    message: str
    failure: Optional[str] = None
    server_version: Optional[str] = None
    database: Optional[str] = None
    server_time: Optional[str] = None


class ExecuteRequest(CamelModel):
    """Sync execution request."""

    configuration_id: int
    sync_type: str = "both"


class ExecuteResponse(CamelModel):
    history_id: int
    configuration_id: int
    sync_type: str
    status: str
    message: str


class SyncHistoryResponse(CamelModel):
    """One sync run."""

    id: int
    configuration_id: int
    sync_type: str
    sync_direction: str
    status: str
    total_records: int
    records_synced: int
    records_failed: int
    conflicts_detected: int
    total_files: int
    files_synced: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None


class ActiveRunResponse(CamelModel):
    configuration_id: int
    history_id: int
    sync_type: str
    state: str
    started_at: datetime
    duration_seconds: float


class SyncStatusResponse(CamelModel):
    active_runs: List[ActiveRunResponse]
    message: Optional[str] = None
    last_sync: Optional[SyncHistoryResponse] = None


class ConflictResponse(CamelModel):
    """A detected conflict with both before-images."""

    id: int
    sync_history_id: int
    table_name: str
    record_id: str
    conflict_type: str
    local_data: Dict[str, Any]
    remote_data: Dict[str, Any]
    local_timestamp: Optional[datetime] = None
    remote_timestamp: Optional[datetime] = None
    local_checksum: Optional[str] = None
    remote_checksum: Optional[str] = None
    status: str
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ResolveRequest(CamelModel):
    resolution: str
    merged_data: Optional[Dict[str, Any]] = None


@router.post("/test-connection", response_model=TestConnectionResponse)
async def test_connection(
    request: TestConnectionRequest,
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service),
    tester: ConnectionTester = Depends(get_connection_tester)
):
    """Probe a peer with the given credentials. Nothing is persisted."""
    server_url = request.server_url
    api_key = request.api_key
    username = request.username
    password = request.password

    if request.configuration_id is not None:
        config = service.get_configuration(db, request.configuration_id)
        if not config:
            raise HTTPException(status_code=404, detail=f"Sync configuration {request.configuration_id} not found")
        stored = service.get_credentials(config)
        server_url = server_url or config.server_url
        api_key = api_key or stored.api_key
        username = username or stored.username
        password = password or stored.password

    try:
        server_url = validate_server_url(server_url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not api_key and not (username and password):
        raise HTTPException(status_code=400, detail="An API key or a username and password is required")

    result = await tester.test(server_url, api_key=api_key, username=username, password=password)
    return TestConnectionResponse(
        success=result.success,
        message=result.message,
        failure=result.failure,
        server_version=result.server_version,
        database=result.database,
        server_time=result.server_time,
    )


@router.post("/execute", response_model=ExecuteResponse, status_code=202)
async def execute_sync(
    request: ExecuteRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Start a sync run.

    The run is accepted and recorded as pending, then proceeds in the
    background. Poll the history endpoint for its outcome.
    """
    if not orchestrator.configuration_service.get_configuration(db, request.configuration_id):
        raise HTTPException(status_code=404, detail=f"Sync configuration {request.configuration_id} not found")

    try:
        run = orchestrator.start_run(db, request.configuration_id, request.sync_type)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to start sync for configuration {request.configuration_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to start sync: {str(e)}")

    background_tasks.add_task(orchestrator.execute_run, run)
    return ExecuteResponse(
        history_id=run.history_id,
        configuration_id=run.configuration_id,
        sync_type=run.sync_type,
        status="pending",
        message="Sync run accepted",
    )


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Active runs with their current state, plus the most recent run."""
    try:
        active = orchestrator.get_sync_status()
        history = orchestrator.get_sync_history(db, limit=1)
        return SyncStatusResponse(
            active_runs=[ActiveRunResponse(**run) for run in active],
            message=None if active else "No sync operation in progress",
            last_sync=SyncHistoryResponse.model_validate(history[0]) if history else None,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get sync status: {str(e)}")


@router.get("/history", response_model=List[SyncHistoryResponse])
async def get_sync_history(
    configurationId: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Past sync runs, most recent first."""
    try:
        history = orchestrator.get_sync_history(db, configurationId, limit, offset)
        return [SyncHistoryResponse.model_validate(h) for h in history]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get sync history: {str(e)}")


@router.get("/history/{history_id}", response_model=SyncHistoryResponse)
async def get_sync_record(
    history_id: int,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    record = orchestrator.get_sync_record(db, history_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"Sync history {history_id} not found")
    return SyncHistoryResponse.model_validate(record)


@router.get("/conflicts", response_model=List[ConflictResponse])
async def list_conflicts(
    status: str = "pending",
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Conflicts awaiting resolution; `status=all` lists every conflict."""
    try:
        conflicts = orchestrator.list_conflicts(db, None if status == "all" else status)
        return [ConflictResponse.model_validate(c) for c in conflicts]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list conflicts: {str(e)}")


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
async def resolve_conflict(
    conflict_id: int,
    request: ResolveRequest,
    db: Session = Depends(get_db),
    resolver: ConflictResolver = Depends(get_conflict_resolver)
):
    """Resolve a conflict. Resolving an already-resolved conflict changes nothing."""
    try:
        conflict = await resolver.resolve(db, conflict_id, request.resolution, request.merged_data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SyncConnectionError, ApplyError) as e:
        raise HTTPException(status_code=502, detail=f"Remote write failed: {str(e)}")
    except Exception as e:
        logger.error(f"Failed to resolve conflict {conflict_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to resolve conflict: {str(e)}")

    if not conflict:
        raise HTTPException(status_code=404, detail=f"Conflict {conflict_id} not found")
    return ConflictResponse.model_validate(conflict)
