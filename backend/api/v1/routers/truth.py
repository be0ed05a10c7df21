"""
Inventory Truth Router — discrepancy detection and read models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from core.errors import InvalidInputError, NotFoundError
from truth.dashboard import (
    analyze_drift,
    discrepancy_to_dict,
    get_dashboard,
    get_hotspots,
    list_discrepancies,
    reconcile_snapshots,
)
from truth.detector import run_analysis

router = APIRouter(
    prefix="/api/v1/truth",
    tags=["truth"],
    dependencies=[Depends(get_current_user)],
)


@router.get("/dashboard")
async def dashboard(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await get_dashboard(db, days=days)


@router.get("/discrepancies")
async def discrepancies(
    status: str | None = Query("OPEN"),
    severity: str | None = None,
    discrepancy_type: str | None = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Discrepancies, most severe first, then newest."""
    items, total = await list_discrepancies(
        db,
        status=status or None,
        severity=severity,
        discrepancy_type=discrepancy_type,
        limit=limit,
        offset=offset,
    )
    return {"total": total, "items": [discrepancy_to_dict(d) for d in items]}


@router.post("/analyze")
async def analyze(db: AsyncSession = Depends(get_db)):
    """Run all detectors and record new discrepancies."""
    summary = await run_analysis(db)
    return {
        "analysis_id": summary.analysis_id,
        "findings_count": summary.findings_count,
        "discrepancies_created": summary.discrepancies_created,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "findings": summary.findings,
    }


@router.get("/hotspots")
async def hotspots(
    dimension: str = Query("location"),
    limit: int = Query(20, ge=1, le=100),
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    try:
        items = await get_hotspots(db, dimension=dimension, limit=limit, days=days)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return {"dimension": dimension, "period_days": days, "hotspots": items}


@router.get("/reconciliation")
async def reconciliation(
    ingestion_id: UUID,
    compare_to: UUID | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Compare an inventory snapshot ingestion with another (default: the previous one)."""
    try:
        return await reconcile_snapshots(db, ingestion_id, compare_to=compare_to)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)


@router.get("/drift")
async def drift(
    sku: str | None = None,
    location_code: str | None = None,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await analyze_drift(db, sku=sku, location_code=location_code, days=days)
