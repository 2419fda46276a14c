"""Sync configuration API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from fieldsync.api.dependencies import get_configuration_service
from fieldsync.database.database import get_db
from fieldsync.services.configuration_service import ConfigurationService
from fieldsync.services.run_registry import run_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync/configurations", tags=["configurations"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfigurationCreate(CamelModel):
    """Configuration creation request."""

    server_name: str
    server_url: str
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    organization_id: int = 1
    sync_direction: str = "one-way"
    sync_database: bool = True
    sync_files: bool = False
    export_format: str = "sql"
    conflict_resolution: str = "manual"
    use_timestamp_comparison: bool = True
    use_checksum_comparison: bool = True
    is_active: bool = True


class ConfigurationUpdate(CamelModel):
    """Configuration update request. Blank secrets keep the stored ones."""

    server_name: Optional[str] = None
    server_url: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    organization_id: Optional[int] = None
    sync_direction: Optional[str] = None
    sync_database: Optional[bool] = None
    sync_files: Optional[bool] = None
    export_format: Optional[str] = None
    conflict_resolution: Optional[str] = None
    use_timestamp_comparison: Optional[bool] = None
    use_checksum_comparison: Optional[bool] = None
    is_active: Optional[bool] = None


class ConfigurationResponse(CamelModel):
    """Configuration response. Secrets are never returned."""

    id: int
    server_name: str
    server_url: str
    username: Optional[str] = None
    has_api_key: bool
    has_password: bool
    organization_id: int
    sync_direction: str
    sync_database: bool
    sync_files: bool
    export_format: str
    conflict_resolution: str
    use_timestamp_comparison: bool
    use_checksum_comparison: bool
    is_active: bool
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@router.post("", response_model=ConfigurationResponse, status_code=201)
async def create_configuration(
    request: ConfigurationCreate,
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Create a sync configuration. Secrets are encrypted before storage."""
    fields = request.model_dump(exclude={"api_key", "password"})
    try:
        config = service.create_configuration(db, api_key=request.api_key, password=request.password, **fields)
        return ConfigurationResponse(**service.to_dict(config))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create configuration: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to create configuration: {str(e)}")


@router.get("", response_model=List[ConfigurationResponse])
async def list_configurations(
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """List all sync configurations."""
    try:
        return [ConfigurationResponse(**service.to_dict(c)) for c in service.list_configurations(db)]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list configurations: {str(e)}")


@router.get("/{configuration_id}", response_model=ConfigurationResponse)
async def get_configuration(
    configuration_id: int,
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service)
):
    config = service.get_configuration(db, configuration_id)
    if not config:
        raise HTTPException(status_code=404, detail=f"Sync configuration {configuration_id} not found")
    return ConfigurationResponse(**service.to_dict(config))


@router.put("/{configuration_id}", response_model=ConfigurationResponse)
async def update_configuration(
    configuration_id: int,
    request: ConfigurationUpdate,
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Update a sync configuration.

    Omitted fields are left unchanged. A blank or missing apiKey/password
    keeps the stored secret.
    """
    fields = request.model_dump(exclude={"api_key", "password"}, exclude_unset=True)
    try:
        config = service.update_configuration(
            db,
            configuration_id,
            api_key=request.api_key,
            password=request.password,
            **fields,
        )
        if not config:
            raise HTTPException(status_code=404, detail=f"Sync configuration {configuration_id} not found")
        return ConfigurationResponse(**service.to_dict(config))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update configuration {configuration_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to update configuration: {str(e)}")


@router.delete("/{configuration_id}", status_code=204)
async def delete_configuration(
    configuration_id: int,
    db: Session = Depends(get_db),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Delete a configuration along with its history and conflicts."""
    if run_registry.is_active(configuration_id):
        raise HTTPException(status_code=409, detail=f"Sync configuration {configuration_id} has a run in progress")
    if not service.delete_configuration(db, configuration_id):
        raise HTTPException(status_code=404, detail=f"Sync configuration {configuration_id} not found")
