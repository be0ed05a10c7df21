"""
Reports Router — periodic operations brief.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from reports.brief import compile_brief

router = APIRouter(
    prefix="/api/v1/reports",
    tags=["reports"],
    dependencies=[Depends(get_current_user)],
)


@router.get("/brief")
async def brief(
    days: int = Query(7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
):
    return await compile_brief(db, days=days)
