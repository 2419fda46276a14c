"""Main FastAPI application entry point."""

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional
import logging

from fieldsync import __version__
from fieldsync.config import configure_logging
from fieldsync.database.database import init_db, get_db
from fieldsync.api.configurations import router as configurations_router
from fieldsync.api.sync import router as sync_router
from fieldsync.services.encryption_service import EncryptionService
from fieldsync.services.run_registry import run_registry
from fieldsync.models.sync_configuration import SyncConfiguration
from fieldsync.models.sync_conflict import SyncConflict
from fieldsync.models.sync_history import SyncHistory

logger = logging.getLogger(__name__)

app = FastAPI(
    title="FieldSync",
    description="Cross-server data synchronization engine",
    version=__version__,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(configurations_router)
app.include_router(sync_router)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    encryption: str
    message: Optional[str] = None


class StatsResponse(BaseModel):
    """System statistics response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    configurations_count: int
    active_configurations_count: int
    sync_runs_count: int
    active_runs_count: int
    pending_conflicts_count: int
    last_sync_status: Optional[str] = None


@app.on_event("startup")
async def startup_event():
    """Initialize database and validate encryption on startup."""
    configure_logging()
    # Validate encryption service (will exit if key is invalid)
    EncryptionService()
    init_db()
    logger.info(f"FieldSync {__version__} started")


@app.get("/")
async def root():
    return {"message": "FieldSync API", "version": __version__}


@app.get("/api/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint.

    Checks database connectivity and encryption key validity.
    """
    health_status = {
        "status": "healthy",
        "database": "connected",
        "encryption": "valid"
    }

    try:
        db.execute(text("SELECT 1"))

        encryption_service = EncryptionService()
        test_encrypted = encryption_service.encrypt("test")
        test_decrypted = encryption_service.decrypt(test_encrypted)

        if test_decrypted != "test":
            health_status["encryption"] = "invalid"
            health_status["status"] = "unhealthy"
            health_status["message"] = "Encryption service validation failed"

        return HealthResponse(**health_status)

    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        health_status["message"] = str(e)
        return HealthResponse(**health_status)


@app.get("/api/stats", response_model=StatsResponse)
async def get_stats(db: Session = Depends(get_db)):
    """Get system statistics.

    Returns counts of configurations, runs and pending conflicts.
    """
    try:
        last_sync = db.query(SyncHistory).order_by(SyncHistory.started_at.desc()).first()

        return StatsResponse(
            configurations_count=db.query(SyncConfiguration).count(),
            active_configurations_count=db.query(SyncConfiguration).filter(SyncConfiguration.is_active == True).count(),
            sync_runs_count=db.query(SyncHistory).count(),
            active_runs_count=len(run_registry.active()),
            pending_conflicts_count=db.query(SyncConflict).filter(SyncConflict.status == "pending").count(),
            last_sync_status=last_sync.status if last_sync else None,
        )

    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get stats: {str(e)}")
