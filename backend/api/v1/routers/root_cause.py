"""
Root Cause Router — investigation and confirmation of discrepancies.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from core.errors import InvalidInputError, NotFoundError
from root_cause.correlator import (
    analyze_location,
    analyze_operator,
    confirm_root_cause,
    investigate,
    investigation_to_dict,
)

router = APIRouter(
    prefix="/api/v1/root-cause",
    tags=["root-cause"],
    dependencies=[Depends(get_current_user)],
)


# ─── Schemas ────────────────────────────────────────────────────────────────


class AssignRootCauseRequest(BaseModel):
    discrepancy_id: UUID
    root_cause: str = Field(..., min_length=1)
    category: str
    notes: str | None = None
    assigned_to: str | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/investigate/{discrepancy_id}")
async def investigate_discrepancy(discrepancy_id: UUID, db: AsyncSession = Depends(get_db)):
    """Timeline, related activity and ranked candidate causes for one discrepancy."""
    try:
        return await investigate(db, discrepancy_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)


@router.post("/assign")
async def assign_root_cause(body: AssignRootCauseRequest, db: AsyncSession = Depends(get_db)):
    """Confirm a root cause and mark the discrepancy INVESTIGATED."""
    try:
        investigation = await confirm_root_cause(
            db,
            body.discrepancy_id,
            root_cause=body.root_cause,
            category=body.category,
            notes=body.notes,
            assigned_to=body.assigned_to,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return {"success": True, "investigation": investigation_to_dict(investigation)}


@router.get("/location-analysis/{location_code}")
async def location_analysis(
    location_code: str,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await analyze_location(db, location_code, days=days)


@router.get("/operator-analysis/{user_id}")
async def operator_analysis(
    user_id: str,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    return await analyze_operator(db, user_id, days=days)
