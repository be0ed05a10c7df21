"""
Ingestion Router — WMS export uploads and ingestion history.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from core.config import get_settings
from core.errors import InvalidInputError, UploadTooLargeError
from ingestion.mappings import describe_mappings
from ingestion.service import ingest_upload, list_ingestions

router = APIRouter(
    prefix="/api/v1/ingest",
    tags=["ingestion"],
    dependencies=[Depends(get_current_user)],
)


# ─── Schemas ────────────────────────────────────────────────────────────────


class UploadResponse(BaseModel):
    success: bool
    ingestion_id: UUID
    records_processed: int
    records_with_errors: int
    records_coerced: int
    errors: list[dict]


class IngestionRecordResponse(BaseModel):
    ingestion_id: UUID
    filename: str
    data_type: str
    source: str | None
    mapping_type: str | None
    record_count: int
    error_count: int
    status: str
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/upload", response_model=UploadResponse)
async def upload_export(
    file: UploadFile = File(...),
    data_type: str | None = Form(None),
    mapping_type: str | None = Form(None),
    source: str = Form("manual"),
    db: AsyncSession = Depends(get_db),
):
    """Upload a WMS export (CSV, Excel or JSON) for normalization."""
    limit = get_settings().max_upload_bytes
    content = await file.read(limit + 1)
    try:
        result = await ingest_upload(
            db,
            filename=file.filename or "",
            content=content,
            data_type=data_type,
            mapping_type=mapping_type,
            source=source,
        )
    except UploadTooLargeError as exc:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=exc.message)
    except InvalidInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    return UploadResponse(
        success=True,
        ingestion_id=result.ingestion_id,
        records_processed=result.records_processed,
        records_with_errors=result.records_with_errors,
        records_coerced=result.records_coerced,
        errors=result.errors,
    )


@router.get("/history", response_model=list[IngestionRecordResponse])
async def ingestion_history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    data_type: str | None = None,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Ingestion runs, most recent first."""
    return await list_ingestions(db, limit=limit, offset=offset, data_type=data_type, status=status)


@router.get("/mappings")
async def get_mappings():
    """Supported data types, required fields and column mapping presets."""
    return describe_mappings()
