"""
Snapshot Loaders

Turns normalized rows into snapshot fact rows and writes them in fixed
size batches, one commit per batch. Rows are independent facts, so the
batching only bounds transaction size and memory.
"""

from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    AdjustmentSnapshot,
    CycleCountSnapshot,
    InventorySnapshot,
    TransactionSnapshot,
)
from ingestion.mappings import DataType
from ingestion.normalize import NormalizedRow

logger = structlog.get_logger()


class BatchLoadError(Exception):
    """A batch failed to persist after `written` rows had been committed."""

    def __init__(self, written: int, cause: Exception):
        super().__init__(f"Batch load failed after {written} rows")
        self.written = written
        self.cause = cause


def compute_variance(system_qty: float, counted_qty: float) -> tuple[float, float]:
    """Cycle count variance and variance percent (0 when the system quantity is 0)."""
    variance = counted_qty - system_qty
    variance_percent = (variance / system_qty) * 100 if system_qty != 0 else 0.0
    return variance, round(variance_percent, 4)


def _inventory_row(ingestion_id, row: NormalizedRow, now: datetime) -> InventorySnapshot:
    f = row.fields
    on_hand = f["quantity_on_hand"]
    allocated = f.get("quantity_allocated", 0.0)
    available = f.get("quantity_available", on_hand - allocated)
    return InventorySnapshot(
        ingestion_id=ingestion_id,
        sku=f["sku"],
        location_code=f["location_code"],
        quantity_on_hand=on_hand,
        quantity_allocated=allocated,
        quantity_available=available,
        lot_number=f.get("lot_number"),
        snapshot_date=f.get("snapshot_date", now),
        raw_data=row.raw,
    )


def _transaction_row(ingestion_id, row: NormalizedRow, now: datetime) -> TransactionSnapshot:
    f = row.fields
    return TransactionSnapshot(
        ingestion_id=ingestion_id,
        external_transaction_id=f.get("transaction_id"),
        transaction_type=f["transaction_type"].upper(),
        sku=f["sku"],
        from_location=f.get("from_location"),
        to_location=f.get("to_location"),
        quantity=f["quantity"],
        user_id=f.get("user_id"),
        transaction_date=f["transaction_date"],
        raw_data=row.raw,
    )


def _adjustment_row(ingestion_id, row: NormalizedRow, now: datetime) -> AdjustmentSnapshot:
    f = row.fields
    return AdjustmentSnapshot(
        ingestion_id=ingestion_id,
        sku=f["sku"],
        location_code=f["location_code"],
        adjustment_qty=f["adjustment_qty"],
        reason=f["reason"],
        reason_code=f.get("reason_code"),
        user_id=f.get("user_id"),
        adjustment_date=f.get("adjustment_date", now),
        raw_data=row.raw,
    )


def _cycle_count_row(ingestion_id, row: NormalizedRow, now: datetime) -> CycleCountSnapshot:
    f = row.fields
    variance, variance_percent = compute_variance(f["system_qty"], f["counted_qty"])
    return CycleCountSnapshot(
        ingestion_id=ingestion_id,
        sku=f["sku"],
        location_code=f["location_code"],
        system_qty=f["system_qty"],
        counted_qty=f["counted_qty"],
        variance=variance,
        variance_percent=variance_percent,
        counter_id=f.get("counter_id"),
        count_date=f.get("count_date", now),
        raw_data=row.raw,
    )


ROW_BUILDERS: dict[DataType, Callable[[Any, NormalizedRow, datetime], Any]] = {
    DataType.INVENTORY_SNAPSHOT: _inventory_row,
    DataType.TRANSACTION_HISTORY: _transaction_row,
    DataType.ADJUSTMENT_LOG: _adjustment_row,
    DataType.CYCLE_COUNT_RESULTS: _cycle_count_row,
}


def chunked(rows: list, size: int) -> Iterator[list]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


async def load_batches(
    db: AsyncSession,
    ingestion_id,
    data_type: DataType,
    rows: list[NormalizedRow],
    batch_size: int = 500,
) -> int:
    """
    Persist rows batch by batch. Returns the number of rows written.

    Earlier batches stay committed when a later one fails; the failure is
    raised as BatchLoadError carrying the count already written.
    """
    build = ROW_BUILDERS[data_type]
    now = datetime.utcnow()
    written = 0

    for batch_number, batch in enumerate(chunked(rows, max(batch_size, 1)), start=1):
        try:
            db.add_all([build(ingestion_id, row, now) for row in batch])
            await db.commit()
        except Exception as exc:
            raise BatchLoadError(written, exc) from exc
        written += len(batch)
        logger.debug(
            "ingestion.batch_committed",
            ingestion_id=str(ingestion_id),
            batch=batch_number,
            rows=len(batch),
        )

    return written
