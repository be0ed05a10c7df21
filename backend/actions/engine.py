"""
Action Recommender — follow-up work generated from open discrepancies.

Action Types:
  - cycle_count: verify the location (every open discrepancy)
  - supervisor_alert: critical discrepancies only
  - hold_inventory: negative on-hand, stop allocation until verified
  - location_audit: adjustment spikes and drift, inspect the location itself

Recommendations are non-invasive: nothing here touches live inventory.
UNIQUE(discrepancy_id, action_type) makes repeated generation idempotent;
a collision is a SKIPPED outcome, never retried or overwritten.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pandas as pd
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidInputError, NotFoundError
from db.errors import is_unique_violation
from db.models import ActionRecommendation, Discrepancy
from truth.detector import ADJUSTMENT_SPIKE, DRIFT_DETECTED, NEGATIVE_ON_HAND, CreationOutcome

logger = structlog.get_logger()

CYCLE_COUNT = "cycle_count"
SUPERVISOR_ALERT = "supervisor_alert"
HOLD_INVENTORY = "hold_inventory"
LOCATION_AUDIT = "location_audit"

PRIORITY = {
    "URGENT": 1,  # Do today
    "HIGH": 2,  # Do this week
    "MEDIUM": 3,  # Schedule this month
}

ACTION_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED")

# Estimated value per unit of variance when no unit cost is known
DEFAULT_UNIT_VALUE = 10.0


def priority_label(priority: int) -> str:
    if priority == 1:
        return "URGENT"
    elif priority == 2:
        return "HIGH"
    return "MEDIUM"


@dataclass(frozen=True)
class DiscrepancyFacts:
    """Plain copy of the discrepancy fields planning needs."""

    discrepancy_id: uuid.UUID
    discrepancy_type: str
    severity: str
    sku: str
    location_code: str
    variance: float
    actual_qty: float | None
    description: str

    @classmethod
    def from_model(cls, d: Discrepancy) -> "DiscrepancyFacts":
        return cls(
            discrepancy_id=d.discrepancy_id,
            discrepancy_type=d.discrepancy_type,
            severity=d.severity,
            sku=d.sku,
            location_code=d.location_code,
            variance=d.variance,
            actual_qty=d.actual_qty,
            description=d.description,
        )


@dataclass(frozen=True)
class PlannedAction:
    action_type: str
    priority: int
    description: str
    instructions: str
    estimated_impact: float = 0.0


def plan_actions(discrepancy: DiscrepancyFacts) -> list[PlannedAction]:
    """Actions one discrepancy calls for. Pure; no store access."""
    critical = discrepancy.severity == "critical"
    planned = [
        PlannedAction(
            action_type=CYCLE_COUNT,
            priority=PRIORITY["URGENT"] if critical else PRIORITY["HIGH"],
            description=f"Verify {discrepancy.sku} at {discrepancy.location_code}",
            instructions=(
                f"Count inventory at location {discrepancy.location_code}. "
                f"System shows variance of {discrepancy.variance:g}. Report actual quantity found."
            ),
            estimated_impact=abs(discrepancy.variance) * DEFAULT_UNIT_VALUE,
        )
    ]

    if critical:
        planned.append(
            PlannedAction(
                action_type=SUPERVISOR_ALERT,
                priority=PRIORITY["URGENT"],
                description=f"Critical inventory issue: {discrepancy.discrepancy_type}",
                instructions=f"Investigate critical discrepancy immediately. {discrepancy.description}",
            )
        )

    if discrepancy.discrepancy_type == NEGATIVE_ON_HAND:
        actual = discrepancy.actual_qty if discrepancy.actual_qty is not None else discrepancy.variance
        planned.append(
            PlannedAction(
                action_type=HOLD_INVENTORY,
                priority=PRIORITY["URGENT"],
                description=f"Hold orders for {discrepancy.sku} pending investigation",
                instructions=(
                    f"Do not allocate or pick {discrepancy.sku} until inventory is verified. "
                    f"Current system shows {actual:g}."
                ),
            )
        )

    if discrepancy.discrepancy_type in (ADJUSTMENT_SPIKE, DRIFT_DETECTED):
        planned.append(
            PlannedAction(
                action_type=LOCATION_AUDIT,
                priority=PRIORITY["HIGH"],
                description=f"Audit location {discrepancy.location_code}",
                instructions=(
                    "Physical audit of location. Check: label visibility, physical condition, "
                    "adjacent locations, slotting appropriateness."
                ),
            )
        )

    return planned


def action_to_dict(a: ActionRecommendation) -> dict[str, Any]:
    return {
        "action_id": str(a.action_id),
        "type": a.action_type,
        "priority": a.priority,
        "priority_label": priority_label(a.priority),
        "discrepancy_id": str(a.discrepancy_id) if a.discrepancy_id else None,
        "sku": a.sku,
        "location_code": a.location_code,
        "description": a.description,
        "instructions": a.instructions,
        "estimated_impact": a.estimated_impact,
        "status": a.status,
        "notes": a.notes,
        "completed_by": a.completed_by,
        "completed_at": a.completed_at,
        "created_at": a.created_at,
    }


# ──────────────────────────────────────────────────────────────────────────
# Generation
# ──────────────────────────────────────────────────────────────────────────


async def create_action(
    db: AsyncSession, facts: DiscrepancyFacts, planned: PlannedAction
) -> tuple[CreationOutcome, ActionRecommendation | None]:
    action = ActionRecommendation(
        action_type=planned.action_type,
        priority=planned.priority,
        discrepancy_id=facts.discrepancy_id,
        sku=facts.sku,
        location_code=facts.location_code,
        description=planned.description,
        instructions=planned.instructions,
        estimated_impact=planned.estimated_impact,
        status="PENDING",
    )
    try:
        async with db.begin_nested():
            db.add(action)
        return CreationOutcome.CREATED, action
    except IntegrityError as exc:
        if is_unique_violation(exc):
            return CreationOutcome.SKIPPED, None
        logger.warning(
            "actions.create_failed",
            discrepancy_id=str(facts.discrepancy_id),
            action_type=planned.action_type,
            error=str(exc.orig),
        )
        return CreationOutcome.FAILED, None


async def generate_actions(db: AsyncSession) -> dict[str, Any]:
    """Ensure every OPEN discrepancy has its planned actions."""
    result = await db.execute(
        select(Discrepancy).where(Discrepancy.status == "OPEN").order_by(Discrepancy.detected_at.asc())
    )
    facts = [DiscrepancyFacts.from_model(d) for d in result.scalars().all()]

    created: list[ActionRecommendation] = []
    skipped = failed = 0
    for discrepancy in facts:
        for planned in plan_actions(discrepancy):
            outcome, action = await create_action(db, discrepancy, planned)
            if outcome == CreationOutcome.CREATED:
                created.append(action)
            elif outcome == CreationOutcome.SKIPPED:
                skipped += 1
            else:
                failed += 1
    await db.commit()

    logger.info(
        "actions.generated",
        discrepancies=len(facts),
        generated=len(created),
        skipped=skipped,
        failed=failed,
    )
    return {
        "generated": len(created),
        "skipped": skipped,
        "failed": failed,
        "actions": [action_to_dict(a) for a in created],
    }


# ──────────────────────────────────────────────────────────────────────────
# Read side
# ──────────────────────────────────────────────────────────────────────────


async def cycle_count_list(db: AsyncSession, max_tasks: int = 50) -> dict[str, Any]:
    """Numbered task list of pending cycle counts. Read-only projection."""
    result = await db.execute(
        select(ActionRecommendation)
        .where(
            ActionRecommendation.action_type == CYCLE_COUNT,
            ActionRecommendation.status == "PENDING",
        )
        .order_by(ActionRecommendation.priority.asc(), ActionRecommendation.created_at.asc())
        .limit(max_tasks)
    )
    actions = result.scalars().all()

    return {
        "generated_at": datetime.utcnow(),
        "task_count": len(actions),
        "tasks": [
            {
                "sequence": index,
                "action_id": str(a.action_id),
                "location_code": a.location_code,
                "sku": a.sku,
                "priority": priority_label(a.priority),
                "description": a.description,
                "instructions": a.instructions,
            }
            for index, a in enumerate(actions, start=1)
        ],
    }


async def list_actions(
    db: AsyncSession,
    status: str | None = None,
    action_type: str | None = None,
    limit: int = 100,
) -> list[ActionRecommendation]:
    query = select(ActionRecommendation)
    if status:
        query = query.where(ActionRecommendation.status == status)
    if action_type:
        query = query.where(ActionRecommendation.action_type == action_type)
    query = query.order_by(ActionRecommendation.priority.asc(), ActionRecommendation.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_action_status(
    db: AsyncSession,
    action_id: uuid.UUID,
    status: str,
    notes: str | None = None,
    completed_by: str | None = None,
) -> ActionRecommendation:
    if status not in ACTION_STATUSES:
        raise InvalidInputError(f"Unknown action status '{status}'. Use: {', '.join(ACTION_STATUSES)}")

    action = await db.get(ActionRecommendation, action_id)
    if action is None:
        raise NotFoundError("Action", action_id)

    action.status = status
    if notes is not None:
        action.notes = notes
    if completed_by is not None:
        action.completed_by = completed_by
    action.completed_at = datetime.utcnow() if status == "COMPLETED" else None
    await db.commit()

    logger.info("actions.status_updated", action_id=str(action_id), status=status)
    return action


EXPORT_COLUMNS = {
    "action_id": "ID",
    "type": "Type",
    "priority": "Priority",
    "sku": "SKU",
    "location_code": "Location",
    "description": "Description",
    "instructions": "Instructions",
    "status": "Status",
    "created_at": "Created",
    "estimated_impact": "Estimated Impact",
}


def actions_to_csv(actions: list[ActionRecommendation]) -> str:
    """CSV export for hand-off to the host WMS or a ticketing system."""
    rows = [action_to_dict(a) for a in actions]
    frame = pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))
    frame["created_at"] = frame["created_at"].map(lambda v: v.isoformat() if v is not None else "")
    frame["estimated_impact"] = frame["estimated_impact"].fillna(0)
    return frame.rename(columns=EXPORT_COLUMNS).to_csv(index=False)
