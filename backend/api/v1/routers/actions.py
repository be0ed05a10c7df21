"""
Actions Router — recommended follow-up work for open discrepancies.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from actions.engine import (
    action_to_dict,
    actions_to_csv,
    cycle_count_list,
    generate_actions,
    list_actions,
    update_action_status,
)
from api.deps import get_current_user, get_db
from core.errors import InvalidInputError, NotFoundError

router = APIRouter(
    prefix="/api/v1/actions",
    tags=["actions"],
    dependencies=[Depends(get_current_user)],
)


class ActionStatusUpdate(BaseModel):
    status: str
    notes: str | None = None
    completed_by: str | None = None


@router.get("")
async def get_actions(
    status: str | None = None,
    action_type: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    actions = await list_actions(db, status=status, action_type=action_type, limit=limit)
    return {"total": len(actions), "actions": [action_to_dict(a) for a in actions]}


@router.post("/generate")
async def generate(db: AsyncSession = Depends(get_db)):
    """Create any missing actions for OPEN discrepancies."""
    return await generate_actions(db)


@router.get("/cycle-count-list")
async def get_cycle_count_list(
    max_tasks: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await cycle_count_list(db, max_tasks=max_tasks)


@router.get("/export")
async def export_actions(
    status: str | None = "PENDING",
    db: AsyncSession = Depends(get_db),
):
    """CSV of actions for hand-off to the WMS."""
    actions = await list_actions(db, status=status or None, limit=10000)
    return Response(
        content=actions_to_csv(actions),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="actions.csv"'},
    )


@router.put("/{action_id}")
async def update_action(action_id: UUID, body: ActionStatusUpdate, db: AsyncSession = Depends(get_db)):
    try:
        action = await update_action_status(
            db, action_id, status=body.status, notes=body.notes, completed_by=body.completed_by
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return action_to_dict(action)
