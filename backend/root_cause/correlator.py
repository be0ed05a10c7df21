"""
Root-Cause Correlator — time-windowed correlation over snapshot history.

For a discrepancy this answers: which transactions, adjustments and
cycle counts touched the same SKU/location in the trailing window, which
operators were involved, and which causes the evidence points at.

Heuristics are independent; every applicable one fires:
  - adjustment_activity:    ≥3 adjustments or |Σ adj| > ½|variance|   → process / medium
  - operator_concentration: ≥3 adjustments by one operator            → human / medium (high at ≥5)
  - receive_without_putaway: RECEIVE seen with no PUTAWAY            → process / high
  - cycle_count_direction:  every count negative (or every positive) → process / high
  - location_hotspot:       ≥3 other open discrepancies at location  → location / high
  - sku_hotspot:            ≥3 other open discrepancies for SKU      → process / medium
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import InvalidInputError, NotFoundError
from db.models import (
    AdjustmentSnapshot,
    CycleCountSnapshot,
    Discrepancy,
    Investigation,
    TransactionSnapshot,
    User,
)
from truth.dashboard import discrepancy_to_dict

logger = structlog.get_logger()

ROOT_CAUSE_CATEGORIES = (
    "process",
    "human",
    "system",
    "external",
    "equipment",
    "location",
    "timing",
    "unknown",
)

CONFIDENCE_ORDER = {"high": 0, "medium": 1, "low": 2, "speculative": 3}

HEURISTIC_THRESHOLDS = {
    "adjustment_count": 3,
    "adjustment_share_of_variance": 0.5,
    "operator_adjustments": 3,
    "operator_adjustments_high": 5,
    "location_open_discrepancies": 3,
    "sku_open_discrepancies": 3,
}

# Recommend a correcting adjustment once the variance is this large
ADJUSTMENT_RECOMMENDATION_UNITS = 10
ADJUSTMENT_APPROVAL_UNITS = 50


# ──────────────────────────────────────────────────────────────────────────
# Serialization helpers
# ──────────────────────────────────────────────────────────────────────────


def _transaction_dict(t: TransactionSnapshot) -> dict[str, Any]:
    return {
        "id": str(t.snapshot_id),
        "transaction_id": t.external_transaction_id,
        "type": t.transaction_type,
        "sku": t.sku,
        "from_location": t.from_location,
        "to_location": t.to_location,
        "quantity": t.quantity,
        "user_id": t.user_id,
        "transaction_date": t.transaction_date,
    }


def _adjustment_dict(a: AdjustmentSnapshot) -> dict[str, Any]:
    return {
        "id": str(a.snapshot_id),
        "sku": a.sku,
        "location_code": a.location_code,
        "adjustment_qty": a.adjustment_qty,
        "reason": a.reason,
        "reason_code": a.reason_code,
        "user_id": a.user_id,
        "adjustment_date": a.adjustment_date,
    }


def _cycle_count_dict(c: CycleCountSnapshot) -> dict[str, Any]:
    return {
        "id": str(c.snapshot_id),
        "sku": c.sku,
        "location_code": c.location_code,
        "system_qty": c.system_qty,
        "counted_qty": c.counted_qty,
        "variance": c.variance,
        "variance_percent": c.variance_percent,
        "counter_id": c.counter_id,
        "count_date": c.count_date,
    }


def investigation_to_dict(inv: Investigation) -> dict[str, Any]:
    return {
        "investigation_id": str(inv.investigation_id),
        "discrepancy_id": str(inv.discrepancy_id),
        "root_cause": inv.root_cause,
        "category": inv.category,
        "notes": inv.notes,
        "assigned_to": inv.assigned_to,
        "status": inv.status,
        "confirmed_at": inv.confirmed_at,
        "created_at": inv.created_at,
    }


# ──────────────────────────────────────────────────────────────────────────
# Timeline + heuristics (pure)
# ──────────────────────────────────────────────────────────────────────────


def build_timeline(
    transactions: list[dict[str, Any]],
    adjustments: list[dict[str, Any]],
    cycle_counts: list[dict[str, Any]],
    discrepancy: dict[str, Any],
) -> list[dict[str, Any]]:
    """Chronological event list ending with the detection itself."""
    events = []
    for t in transactions:
        events.append(
            {
                "timestamp": t["transaction_date"],
                "type": "transaction",
                "action": t["type"],
                "quantity": t["quantity"],
                "from": t["from_location"],
                "to": t["to_location"],
                "operator": t["user_id"],
            }
        )
    for a in adjustments:
        events.append(
            {
                "timestamp": a["adjustment_date"],
                "type": "adjustment",
                "action": a["reason"],
                "quantity": a["adjustment_qty"],
                "location": a["location_code"],
                "operator": a["user_id"],
            }
        )
    for c in cycle_counts:
        events.append(
            {
                "timestamp": c["count_date"],
                "type": "cycle_count",
                "action": "count",
                "system_qty": c["system_qty"],
                "counted_qty": c["counted_qty"],
                "variance": c["variance"],
                "operator": c["counter_id"],
            }
        )
    events.append(
        {
            "timestamp": discrepancy["detected_at"],
            "type": "discrepancy_detected",
            "action": discrepancy["type"],
            "severity": discrepancy["severity"],
            "variance": discrepancy["variance"],
        }
    )
    # Stable sort keeps the detection last when timestamps tie
    events.sort(key=lambda e: e["timestamp"])
    return events


def analyze_possible_causes(
    discrepancy: dict[str, Any],
    transactions: list[dict[str, Any]],
    adjustments: list[dict[str, Any]],
    cycle_counts: list[dict[str, Any]],
    operators: dict[str, dict[str, Any]],
    other_open_at_location: int,
    other_open_for_sku: int,
) -> list[dict[str, Any]]:
    """Apply every heuristic; return candidate causes sorted by confidence."""
    causes = []
    variance = discrepancy["variance"] or 0

    # 1. Adjustment activity
    if adjustments:
        total_adjusted = sum(a["adjustment_qty"] for a in adjustments)
        if (
            len(adjustments) >= HEURISTIC_THRESHOLDS["adjustment_count"]
            or abs(total_adjusted) > abs(variance) * HEURISTIC_THRESHOLDS["adjustment_share_of_variance"]
        ):
            causes.append(
                {
                    "category": "process",
                    "heuristic": "adjustment_activity",
                    "description": "High adjustment volume may indicate a systematic issue",
                    "confidence": "medium",
                    "evidence": {
                        "adjustment_count": len(adjustments),
                        "total_adjusted": total_adjusted,
                        "discrepancy_variance": variance,
                    },
                    "possible_reasons": [
                        "Receiving errors requiring frequent corrections",
                        "Pick errors being adjusted rather than root-caused",
                        "Damaged inventory adjusted without investigation",
                    ],
                }
            )

    # 2. Operator concentration
    per_operator = Counter(a["user_id"] for a in adjustments if a["user_id"])
    for user_id in sorted(per_operator):
        count = per_operator[user_id]
        if count < HEURISTIC_THRESHOLDS["operator_adjustments"]:
            continue
        operator = operators.get(user_id)
        name = (operator or {}).get("full_name") or user_id
        causes.append(
            {
                "category": "human",
                "heuristic": "operator_concentration",
                "description": f"Operator {name} made {count} adjustments",
                "confidence": "high" if count >= HEURISTIC_THRESHOLDS["operator_adjustments_high"] else "medium",
                "evidence": {
                    "operator_id": user_id,
                    "operator_name": (operator or {}).get("full_name"),
                    "adjustment_count": count,
                },
                "possible_reasons": [
                    "Training gap: operator may need retraining",
                    "Procedures may be unclear",
                    "Scanner or RF gun problems",
                ],
            }
        )

    # 3. Transaction sequence
    types = [t["type"] for t in transactions]
    if "RECEIVE" in types and "PUTAWAY" not in types:
        causes.append(
            {
                "category": "process",
                "heuristic": "receive_without_putaway",
                "description": "Receiving transaction without corresponding putaway",
                "confidence": "high",
                "evidence": {"transaction_types": types},
                "possible_reasons": [
                    "Product received but not put away to final location",
                    "Putaway transaction not recorded in WMS",
                    "Product sitting in staging area",
                ],
            }
        )

    # 4. Cycle count direction
    if cycle_counts:
        variances = [c["variance"] for c in cycle_counts]
        if all(v < 0 for v in variances):
            causes.append(
                {
                    "category": "process",
                    "heuristic": "cycle_count_direction",
                    "description": "Consistent negative variances in cycle counts (likely unrecorded consumption)",
                    "confidence": "high",
                    "evidence": {"count_count": len(variances), "variances": variances},
                    "possible_reasons": [
                        "Unrecorded picks or moves out of location",
                        "Theft or shrinkage",
                        "Damage disposal not recorded",
                    ],
                }
            )
        elif all(v > 0 for v in variances):
            causes.append(
                {
                    "category": "process",
                    "heuristic": "cycle_count_direction",
                    "description": "Consistent positive variances in cycle counts",
                    "confidence": "high",
                    "evidence": {"count_count": len(variances), "variances": variances},
                    "possible_reasons": [
                        "Unrecorded receiving or moves into location",
                        "Returns placed without transaction",
                        "Mis-slot from adjacent location",
                    ],
                }
            )

    # 5. Location hotspot
    if other_open_at_location >= HEURISTIC_THRESHOLDS["location_open_discrepancies"]:
        causes.append(
            {
                "category": "location",
                "heuristic": "location_hotspot",
                "description": (
                    f"Location {discrepancy['location_code']} has "
                    f"{other_open_at_location} other open discrepancies"
                ),
                "confidence": "high",
                "evidence": {
                    "location_code": discrepancy["location_code"],
                    "other_issues_count": other_open_at_location,
                },
                "possible_reasons": [
                    "Location physically problematic (hard to reach, confusing)",
                    "Multiple SKUs in location causing confusion",
                    "Location label damaged or hard to read",
                ],
            }
        )

    # 6. SKU hotspot
    if other_open_for_sku >= HEURISTIC_THRESHOLDS["sku_open_discrepancies"]:
        causes.append(
            {
                "category": "process",
                "heuristic": "sku_hotspot",
                "description": f"SKU {discrepancy['sku']} has {other_open_for_sku} other open discrepancies",
                "confidence": "medium",
                "evidence": {"sku": discrepancy["sku"], "other_issues_count": other_open_for_sku},
                "possible_reasons": [
                    "SKU easily confused with similar item",
                    "Unit of measure confusion (eaches vs cases)",
                    "Barcode scanning issues",
                ],
            }
        )

    causes.sort(key=lambda c: CONFIDENCE_ORDER[c["confidence"]])
    return causes


def recommend_next_steps(discrepancy: dict[str, Any], causes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Follow-up steps implied by the candidate causes."""
    steps = [
        {
            "priority": 1,
            "action": "CYCLE_COUNT",
            "description": f"Perform cycle count at {discrepancy['location_code']} for {discrepancy['sku']}",
            "assign_to": "inventory_control",
        }
    ]

    seen = set()
    for cause in causes:
        category = cause["category"]
        if category in seen:
            continue
        seen.add(category)
        if category == "human":
            steps.append(
                {
                    "priority": 2,
                    "action": "TRAINING_REVIEW",
                    "description": "Review training for the operator named in the investigation",
                    "assign_to": "supervisor",
                }
            )
        elif category == "location":
            steps.append(
                {
                    "priority": 2,
                    "action": "LOCATION_AUDIT",
                    "description": f"Audit location {discrepancy['location_code']} for physical issues",
                    "assign_to": "warehouse_ops",
                }
            )
        elif category == "process":
            steps.append(
                {
                    "priority": 3,
                    "action": "PROCESS_REVIEW",
                    "description": "Review related SOP for gaps or clarity issues",
                    "assign_to": "operations",
                }
            )

    variance = discrepancy["variance"] or 0
    if abs(variance) > ADJUSTMENT_RECOMMENDATION_UNITS:
        steps.append(
            {
                "priority": 4,
                "action": "ADJUSTMENT",
                "description": f"After root cause confirmed, adjust inventory by {-variance:g}",
                "assign_to": "inventory_control",
                "requires_approval": abs(variance) > ADJUSTMENT_APPROVAL_UNITS,
            }
        )

    steps.sort(key=lambda s: s["priority"])
    return steps


# ──────────────────────────────────────────────────────────────────────────
# Investigation
# ──────────────────────────────────────────────────────────────────────────


async def _get_discrepancy(db: AsyncSession, discrepancy_id: uuid.UUID) -> Discrepancy:
    discrepancy = await db.get(Discrepancy, discrepancy_id)
    if discrepancy is None:
        raise NotFoundError("Discrepancy", discrepancy_id)
    return discrepancy


async def _count_other_open(db: AsyncSession, discrepancy: Discrepancy, column, value: str) -> int:
    count = await db.scalar(
        select(func.count())
        .select_from(Discrepancy)
        .where(
            column == value,
            Discrepancy.status == "OPEN",
            Discrepancy.discrepancy_id != discrepancy.discrepancy_id,
        )
    )
    return int(count or 0)


async def investigate(db: AsyncSession, discrepancy_id: uuid.UUID) -> dict[str, Any]:
    """Correlate snapshot history around a discrepancy into candidate causes."""
    settings = get_settings()
    discrepancy = await _get_discrepancy(db, discrepancy_id)
    end = discrepancy.detected_at
    start = end - timedelta(days=settings.root_cause_window_days)
    sku, location = discrepancy.sku, discrepancy.location_code

    tx_result = await db.execute(
        select(TransactionSnapshot)
        .where(
            TransactionSnapshot.sku == sku,
            or_(TransactionSnapshot.to_location == location, TransactionSnapshot.from_location == location),
            TransactionSnapshot.transaction_date >= start,
            TransactionSnapshot.transaction_date <= end,
        )
        .order_by(TransactionSnapshot.transaction_date.desc())
    )
    transactions = [_transaction_dict(t) for t in tx_result.scalars().all()]

    adj_result = await db.execute(
        select(AdjustmentSnapshot)
        .where(
            AdjustmentSnapshot.sku == sku,
            AdjustmentSnapshot.location_code == location,
            AdjustmentSnapshot.adjustment_date >= start,
            AdjustmentSnapshot.adjustment_date <= end,
        )
        .order_by(AdjustmentSnapshot.adjustment_date.desc())
    )
    adjustments = [_adjustment_dict(a) for a in adj_result.scalars().all()]

    cc_result = await db.execute(
        select(CycleCountSnapshot)
        .where(
            CycleCountSnapshot.sku == sku,
            CycleCountSnapshot.location_code == location,
            CycleCountSnapshot.count_date >= start,
            CycleCountSnapshot.count_date <= end,
        )
        .order_by(CycleCountSnapshot.count_date.desc())
    )
    cycle_counts = [_cycle_count_dict(c) for c in cc_result.scalars().all()]

    operator_ids = sorted(
        {t["user_id"] for t in transactions if t["user_id"]}
        | {a["user_id"] for a in adjustments if a["user_id"]}
        | {c["counter_id"] for c in cycle_counts if c["counter_id"]}
    )
    operators: dict[str, dict[str, Any]] = {}
    if operator_ids:
        user_result = await db.execute(select(User).where(User.username.in_(operator_ids)))
        for user in user_result.scalars().all():
            operators[user.username] = {
                "user_id": str(user.user_id),
                "username": user.username,
                "full_name": user.full_name,
                "role": user.role,
            }

    summary = discrepancy_to_dict(discrepancy)
    causes = analyze_possible_causes(
        summary,
        transactions,
        adjustments,
        cycle_counts,
        operators,
        other_open_at_location=await _count_other_open(db, discrepancy, Discrepancy.location_code, location),
        other_open_for_sku=await _count_other_open(db, discrepancy, Discrepancy.sku, sku),
    )

    inv_result = await db.execute(
        select(Investigation)
        .where(Investigation.discrepancy_id == discrepancy.discrepancy_id)
        .order_by(Investigation.created_at.desc())
    )

    logger.info(
        "root_cause.investigated",
        discrepancy_id=str(discrepancy.discrepancy_id),
        transactions=len(transactions),
        adjustments=len(adjustments),
        cycle_counts=len(cycle_counts),
        causes=len(causes),
    )

    return {
        "discrepancy": summary,
        "window": {"start": start, "end": end},
        "timeline": build_timeline(transactions, adjustments, cycle_counts, summary),
        "related_transactions": transactions,
        "related_adjustments": adjustments,
        "related_cycle_counts": cycle_counts,
        "involved_operators": [operators[k] for k in sorted(operators)],
        "unmatched_operator_ids": [uid for uid in operator_ids if uid not in operators],
        "possible_causes": causes,
        "recommended_actions": recommend_next_steps(summary, causes),
        "investigations": [investigation_to_dict(i) for i in inv_result.scalars().all()],
    }


async def confirm_root_cause(
    db: AsyncSession,
    discrepancy_id: uuid.UUID,
    root_cause: str,
    category: str,
    notes: str | None = None,
    assigned_to: str | None = None,
) -> Investigation:
    """
    Record a confirmed root cause.

    Writes the Investigation and moves the discrepancy to INVESTIGATED in
    one transaction; any failure rolls both back.
    """
    if category not in ROOT_CAUSE_CATEGORIES:
        raise InvalidInputError(f"Unknown root cause category '{category}'. Use: {', '.join(ROOT_CAUSE_CATEGORIES)}")
    if not root_cause or not root_cause.strip():
        raise InvalidInputError("root_cause is required")

    try:
        discrepancy = await _get_discrepancy(db, discrepancy_id)
        now = datetime.utcnow()
        investigation = Investigation(
            discrepancy_id=discrepancy.discrepancy_id,
            root_cause=root_cause.strip(),
            category=category,
            notes=notes,
            assigned_to=assigned_to,
            status="CONFIRMED",
            confirmed_at=now,
        )
        db.add(investigation)
        discrepancy.status = "INVESTIGATED"
        discrepancy.root_cause = root_cause.strip()
        discrepancy.root_cause_category = category
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "root_cause.confirmed",
        discrepancy_id=str(discrepancy_id),
        investigation_id=str(investigation.investigation_id),
        category=category,
    )
    return investigation


# ──────────────────────────────────────────────────────────────────────────
# Location / operator analysis
# ──────────────────────────────────────────────────────────────────────────


async def analyze_location(db: AsyncSession, location_code: str, days: int = 30) -> dict[str, Any]:
    """Discrepancy, adjustment and count history for one location."""
    since = datetime.utcnow() - timedelta(days=days)

    disc_result = await db.execute(
        select(Discrepancy)
        .where(Discrepancy.location_code == location_code, Discrepancy.detected_at >= since)
        .order_by(Discrepancy.detected_at.desc())
    )
    discrepancies = list(disc_result.scalars().all())

    adj_result = await db.execute(
        select(AdjustmentSnapshot).where(
            AdjustmentSnapshot.location_code == location_code,
            AdjustmentSnapshot.adjustment_date >= since,
        )
    )
    adjustments = list(adj_result.scalars().all())

    cc_result = await db.execute(
        select(CycleCountSnapshot).where(
            CycleCountSnapshot.location_code == location_code,
            CycleCountSnapshot.count_date >= since,
        )
    )
    cycle_counts = list(cc_result.scalars().all())

    by_type = Counter(d.discrepancy_type for d in discrepancies)
    by_severity = Counter(d.severity for d in discrepancies)
    variances = [abs(c.variance_percent) for c in cycle_counts]

    return {
        "location_code": location_code,
        "period": {"from": since, "to": datetime.utcnow()},
        "metrics": {
            "total_discrepancies": len(discrepancies),
            "open_discrepancies": sum(1 for d in discrepancies if d.status == "OPEN"),
            "total_adjustments": len(adjustments),
            "net_adjusted": sum(a.adjustment_qty for a in adjustments),
            "cycle_counts": len(cycle_counts),
            "avg_count_variance_percent": round(sum(variances) / len(variances), 2) if variances else 0.0,
            "unique_skus": len({d.sku for d in discrepancies} | {a.sku for a in adjustments}),
        },
        "discrepancies_by_type": dict(by_type),
        "discrepancies_by_severity": dict(by_severity),
        "recent_discrepancies": [discrepancy_to_dict(d) for d in discrepancies[:20]],
    }


async def analyze_operator(db: AsyncSession, user_id: str, days: int = 30) -> dict[str, Any]:
    """Adjustment behaviour of one operator and discrepancies where they worked."""
    since = datetime.utcnow() - timedelta(days=days)

    adj_result = await db.execute(
        select(AdjustmentSnapshot)
        .where(AdjustmentSnapshot.user_id == user_id, AdjustmentSnapshot.adjustment_date >= since)
        .order_by(AdjustmentSnapshot.adjustment_date.desc())
    )
    adjustments = list(adj_result.scalars().all())

    locations = sorted({a.location_code for a in adjustments})
    related = 0
    if locations:
        related = await db.scalar(
            select(func.count())
            .select_from(Discrepancy)
            .where(and_(Discrepancy.location_code.in_(locations), Discrepancy.detected_at >= since))
        )

    user = await db.scalar(select(User).where(User.username == user_id))
    total_adjusted = sum(abs(a.adjustment_qty) for a in adjustments)

    return {
        "user_id": user_id,
        "user": (
            {"username": user.username, "full_name": user.full_name, "role": user.role} if user else None
        ),
        "period": {"from": since, "to": datetime.utcnow()},
        "metrics": {
            "total_adjustments": len(adjustments),
            "total_adjusted": total_adjusted,
            "unique_locations": len(locations),
            "unique_skus": len({a.sku for a in adjustments}),
            "avg_adjustment_size": total_adjusted / len(adjustments) if adjustments else 0.0,
        },
        "adjustments_by_reason": dict(Counter(a.reason for a in adjustments)),
        "related_discrepancies": int(related or 0),
        "recent_adjustments": [_adjustment_dict(a) for a in adjustments[:20]],
    }
