"""
Ingestion Service

Entry point for WMS export uploads:

  1. Content check (extension vs. magic bytes / parseability)
  2. Store the accepted file under the upload path
  3. Create the IngestionRecord (PROCESSING)
  4. Parse → map → normalize
  5. Load in batches, one commit per batch
  6. Mark the record COMPLETED with the rows actually written, or FAILED

A parse failure aborts before any snapshot row is written; the record is
kept as FAILED with the parser's message. A load failure keeps the batches
already committed: the record is FAILED with record_count set to the rows
written and a one-line error message.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import IngestionParseError, InvalidInputError, UploadTooLargeError
from db.models import IngestionRecord
from ingestion.loader import BatchLoadError, load_batches
from ingestion.mappings import DEFAULT_MAPPING_TYPE, COLUMN_MAPPINGS, DataType, resolve_mapping
from ingestion.normalize import normalize_records
from ingestion.parsers import check_content, file_extension, parse_records

logger = structlog.get_logger()

MAX_RETURNED_ERRORS = 20
MAX_STORED_ERRORS = 100
MAX_ERROR_MESSAGE = 200


@dataclass
class IngestionResult:
    ingestion_id: uuid.UUID
    records_processed: int
    records_with_errors: int
    records_coerced: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


def parse_data_type(value: str | None) -> DataType:
    if not value:
        return DataType.INVENTORY_SNAPSHOT
    try:
        return DataType(value)
    except ValueError:
        allowed = ", ".join(dt.value for dt in DataType)
        raise InvalidInputError(f"Unknown data_type '{value}'. Use one of: {allowed}")


def store_upload(content: bytes, filename: str, data_type: DataType, upload_dir: str | Path) -> Path:
    """Write the accepted upload to disk under a collision-free name."""
    directory = Path(upload_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    target = directory / f"{data_type.value}-{stamp}-{uuid.uuid4().hex[:8]}{file_extension(filename)}"
    target.write_bytes(content)
    return target


def _short_error(exc: Exception) -> str:
    """Exception class plus the first line of the driver message, without the statement."""
    detail = str(getattr(exc, "orig", None) or exc).strip()
    if not detail:
        return type(exc).__name__
    return f"{type(exc).__name__}: {detail.splitlines()[0][:MAX_ERROR_MESSAGE]}"


async def _mark_failed(db: AsyncSession, record: IngestionRecord, message: str) -> None:
    record.status = "FAILED"
    record.error_message = message
    record.completed_at = datetime.utcnow()
    await db.commit()


async def ingest_upload(
    db: AsyncSession,
    filename: str,
    content: bytes,
    data_type: DataType | str | None = None,
    mapping_type: str | None = None,
    source: str = "manual",
    strict: bool | None = None,
    upload_dir: str | Path | None = None,
) -> IngestionResult:
    """Ingest one uploaded export file."""
    settings = get_settings()
    if len(content) > settings.max_upload_bytes:
        raise UploadTooLargeError(
            f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB upload limit"
        )

    if not isinstance(data_type, DataType):
        data_type = parse_data_type(data_type)
    mapping_type = (mapping_type or DEFAULT_MAPPING_TYPE).lower()
    if strict is None:
        strict = settings.ingestion_strict_numeric

    check_content(filename, content)
    stored = store_upload(content, filename, data_type, upload_dir or settings.upload_path)

    record = IngestionRecord(
        filename=filename,
        file_path=str(stored),
        data_type=data_type.value,
        source=source or "manual",
        mapping_type=mapping_type if mapping_type in COLUMN_MAPPINGS else DEFAULT_MAPPING_TYPE,
        status="PROCESSING",
        ingestion_metadata={"file_size": len(content), "strict_numeric": strict},
    )
    db.add(record)
    await db.commit()

    log = logger.bind(ingestion_id=str(record.ingestion_id), data_type=data_type.value)
    log.info("ingestion.started", filename=filename, mapping_type=record.mapping_type)

    try:
        parsed = parse_records(filename, content)
    except IngestionParseError as exc:
        await _mark_failed(db, record, exc.message)
        log.warning("ingestion.parse_failed", error=exc.message)
        raise

    normalized = normalize_records(parsed, data_type, resolve_mapping(mapping_type, data_type), strict=strict)
    errors = [error.to_dict() for error in normalized.errors]

    try:
        written = await load_batches(
            db,
            record.ingestion_id,
            data_type,
            normalized.rows,
            batch_size=settings.ingestion_batch_size,
        )
    except BatchLoadError as exc:
        await db.rollback()
        message = f"Load failed after {exc.written} rows: {_short_error(exc.cause)}"
        record.record_count = exc.written
        await _mark_failed(db, record, message)
        log.error("ingestion.load_failed", rows_written=exc.written, error=message)
        raise exc.cause from None

    record.status = "COMPLETED"
    record.record_count = written
    record.error_count = len(errors)
    record.completed_at = datetime.utcnow()
    record.ingestion_metadata = {
        **(record.ingestion_metadata or {}),
        "rows_parsed": len(parsed),
        "rows_coerced": normalized.coerced,
        "errors": errors[:MAX_STORED_ERRORS],
    }
    await db.commit()

    log.info(
        "ingestion.completed",
        rows_parsed=len(parsed),
        rows_written=written,
        rows_rejected=len(errors),
        rows_coerced=normalized.coerced,
    )

    return IngestionResult(
        ingestion_id=record.ingestion_id,
        records_processed=written,
        records_with_errors=len(errors),
        records_coerced=normalized.coerced,
        errors=errors[:MAX_RETURNED_ERRORS],
    )


async def list_ingestions(
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
    data_type: str | None = None,
    status: str | None = None,
) -> list[IngestionRecord]:
    """Most recent ingestion records first."""
    query = select(IngestionRecord)
    if data_type:
        query = query.where(IngestionRecord.data_type == data_type)
    if status:
        query = query.where(IngestionRecord.status == status)
    query = query.order_by(IngestionRecord.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
