"""Receiver FastAPI application."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import text
from sqlalchemy.engine import Engine

from fieldsync import __version__
from fieldsync.database.database import create_sync_engine
from fieldsync.receiver.applier import DatabaseApplier
from fieldsync.receiver.auth import Authenticator, Principal
from fieldsync.receiver.config import ReceiverSettings
from fieldsync.services.checksum import normalize_record
from fieldsync.services.errors import ApplyError, ConfigurationError
from fieldsync.services.file_store import FileStore
from fieldsync.services.record_source import SqlAlchemyRecordSource

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CsvTable(CamelModel):
    table: str
    primary_key: str
    columns: List[str]
    row_count: Optional[int] = None
    csv: str


class CsvDeletes(CamelModel):
    table: str
    primary_key: str
    ids: List[str]


class DatabaseBody(CamelModel):
    """Database payload for one organization."""

    organization_id: int
    format: str = "sql"
    statements: List[str] = []
    tables: List[CsvTable] = []
    deletes: List[CsvDeletes] = []


class TableRef(CamelModel):
    table: str
    primary_key: Optional[str] = None


class RecordsRequest(CamelModel):
    organization_id: int
    tables: List[TableRef] = []


def _failure(status_code: int, error: str, failed_index: Optional[int] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "recordsApplied": 0, "failedIndex": failed_index},
    )


def _parse_json_field(name: str, value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Field '{name}' is not valid JSON")


def create_receiver_app(settings: Optional[ReceiverSettings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """Build a receiver app.

    Args:
        settings: Receiver settings; read from the environment when omitted.
        engine: Engine for the target database; built from settings when omitted.
    """
    settings = settings or ReceiverSettings()
    engine = engine or create_sync_engine(settings.database_url)
    file_store = FileStore(settings.file_storage_path)
    applier = DatabaseApplier(engine)
    record_source = SqlAlchemyRecordSource(engine)
    authenticate = Authenticator(settings)

    app = FastAPI(
        title="FieldSync Receiver",
        description="Applies database payloads and files sent by sync peers",
        version=__version__,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.file_store = file_store

    def apply_database(body: DatabaseBody) -> Dict[str, Any]:
        payload = body.model_dump(by_alias=True)
        return applier.apply(payload)

    def store_files(organization_id: int, files: List[UploadFile], checksums: Optional[Dict[str, str]]) -> List[Dict[str, Any]]:
        stored = []
        for upload in files:
            try:
                _, checksum, size = file_store.write_stream(organization_id, upload.filename, upload.file)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            entry = {"filename": upload.filename, "checksum": checksum, "size": size}
            if checksums and upload.filename in checksums:
                entry["matches"] = checksums[upload.filename] == checksum
                if not entry["matches"]:
                    logger.warning(f"Checksum mismatch on received file {upload.filename} for organization {organization_id}")
            stored.append(entry)
        logger.info(f"Stored {len(stored)} files for organization {organization_id}")
        return stored

    @app.get("/api/sync/status")
    async def sync_status(principal: Principal = Depends(authenticate)):
        """Liveness, backing-store reachability, server time and version."""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            database = "connected"
        except Exception as e:
            logger.error(f"Receiver database check failed: {e}")
            database = "disconnected"
        return {
            "status": "ok",
            "database": database,
            "serverTime": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    @app.post("/api/sync/database")
    def receive_database(body: DatabaseBody, principal: Principal = Depends(authenticate)):
        """Apply a database payload in one transaction."""
        try:
            result = apply_database(body)
        except ConfigurationError as e:
            return _failure(400, str(e))
        except ApplyError as e:
            return _failure(500, str(e), e.failed_index)
        return {"success": True, "organizationId": body.organization_id, **result}

    @app.post("/api/sync/files")
    def receive_files(
        organizationId: int = Form(...),
        checksums: Optional[str] = Form(None),
        files: List[UploadFile] = File(...),
        principal: Principal = Depends(authenticate),
    ):
        """Store files for one organization and return their computed checksums."""
        expected = _parse_json_field("checksums", checksums)
        stored = store_files(organizationId, files, expected)
        return {"success": True, "organizationId": organizationId, "files": stored}

    @app.get("/api/sync/files")
    def file_manifest(organizationId: int, principal: Principal = Depends(authenticate)):
        """Checksums of the files already stored for an organization."""
        return {"success": True, "organizationId": organizationId, "files": file_store.manifest(organizationId)}

    @app.post("/api/sync/receive")
    def receive_combined(
        organizationId: int = Form(...),
        database: Optional[str] = Form(None),
        checksums: Optional[str] = Form(None),
        files: Optional[List[UploadFile]] = File(None),
        principal: Principal = Depends(authenticate),
    ):
        """Apply a database payload, then store files.

        Files are only written once the database transaction committed.
        """
        response: Dict[str, Any] = {"success": True, "organizationId": organizationId}

        database_body = _parse_json_field("database", database)
        if database_body is not None:
            try:
                body = DatabaseBody.model_validate(database_body)
                response["database"] = apply_database(body)
            except ConfigurationError as e:
                return _failure(400, str(e))
            except ApplyError as e:
                return _failure(500, str(e), e.failed_index)
            except ValueError as e:
                return _failure(400, f"Invalid database payload: {e}")

        response["files"] = store_files(organizationId, files or [], _parse_json_field("checksums", checksums))
        return response

    @app.post("/api/sync/records")
    def current_records(request: RecordsRequest, principal: Principal = Depends(authenticate)):
        """Current rows of the requested tables for one organization."""
        record_source.refresh()
        records = {}
        for ref in request.tables:
            try:
                records[ref.table] = [
                    normalize_record(row) for row in record_source.fetch_records(ref.table, request.organization_id)
                ]
            except KeyError:
                logger.warning(f"Peer requested unknown table '{ref.table}'")
                records[ref.table] = []
        return {"success": True, "organizationId": request.organization_id, "records": jsonable_encoder(records)}

    return app
