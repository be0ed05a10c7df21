"""
Inventory Truth Read Models

Dashboard rollup, filtered discrepancy listing, problem hotspots,
snapshot-to-snapshot reconciliation and on-hand drift. All read-only.
"""

import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

import numpy as np
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidInputError, NotFoundError
from db.models import (
    AdjustmentSnapshot,
    CycleCountSnapshot,
    Discrepancy,
    IngestionRecord,
    InventorySnapshot,
)

HOTSPOT_DIMENSIONS = ("location", "sku")

# Location counts within ±1% are treated as accurate
ACCURATE_VARIANCE_PERCENT = 1.0

# Drift slope (units per snapshot) below which on-hand is considered stable
DRIFT_STABLE_SLOPE = 0.1

severity_order = case(
    (Discrepancy.severity == "critical", 0),
    (Discrepancy.severity == "high", 1),
    (Discrepancy.severity == "medium", 2),
    else_=3,
)


def discrepancy_to_dict(d: Discrepancy) -> dict[str, Any]:
    return {
        "discrepancy_id": str(d.discrepancy_id),
        "type": d.discrepancy_type,
        "severity": d.severity,
        "sku": d.sku,
        "location_code": d.location_code,
        "expected_qty": d.expected_qty,
        "actual_qty": d.actual_qty,
        "variance": d.variance,
        "variance_percent": d.variance_percent,
        "description": d.description,
        "status": d.status,
        "root_cause": d.root_cause,
        "root_cause_category": d.root_cause_category,
        "detected_at": d.detected_at,
        "resolved_at": d.resolved_at,
    }


# ──────────────────────────────────────────────────────────────────────────
# Dashboard
# ──────────────────────────────────────────────────────────────────────────


async def get_dashboard(db: AsyncSession, days: int = 30) -> dict[str, Any]:
    """Rollup of discrepancies detected within the trailing `days` window."""
    since = datetime.utcnow() - timedelta(days=days)

    breakdown_rows = await db.execute(
        select(
            Discrepancy.discrepancy_type,
            Discrepancy.severity,
            func.count().label("count"),
            func.sum(case((Discrepancy.status == "OPEN", 1), else_=0)).label("open_count"),
        )
        .where(Discrepancy.detected_at >= since)
        .group_by(Discrepancy.discrepancy_type, Discrepancy.severity)
    )
    breakdown = [
        {
            "type": row.discrepancy_type,
            "severity": row.severity,
            "count": int(row.count),
            "open_count": int(row.open_count or 0),
        }
        for row in breakdown_rows.all()
    ]
    breakdown.sort(key=lambda b: (b["type"], b["severity"]))

    recent = await db.execute(
        select(Discrepancy)
        .where(Discrepancy.detected_at >= since)
        .order_by(Discrepancy.detected_at.desc(), severity_order)
        .limit(10)
    )

    accuracy = await _location_accuracy(db, since)

    return {
        "period_days": days,
        "open_discrepancies": sum(b["open_count"] for b in breakdown),
        "critical_issues": sum(b["open_count"] for b in breakdown if b["severity"] == "critical"),
        "accuracy_score": accuracy["accuracy_score"],
        "avg_variance_percent": accuracy["avg_variance_percent"],
        "discrepancy_breakdown": breakdown,
        "recent_discrepancies": [discrepancy_to_dict(d) for d in recent.scalars().all()],
        "adjustment_trends": await _adjustment_trends(db, since),
        "hotspots": {
            "locations": await get_hotspots(db, "location", limit=10, days=days, open_only=True),
            "skus": await get_hotspots(db, "sku", limit=10, days=days, open_only=True),
        },
    }


async def _location_accuracy(db: AsyncSession, since: datetime) -> dict[str, float]:
    """Share of counted locations whose net variance is within ±1%."""
    rows = await db.execute(
        select(
            CycleCountSnapshot.location_code,
            func.sum(CycleCountSnapshot.system_qty).label("system_qty"),
            func.sum(CycleCountSnapshot.variance).label("variance"),
        )
        .where(CycleCountSnapshot.count_date >= since)
        .group_by(CycleCountSnapshot.location_code)
    )
    percents = []
    for row in rows.all():
        system_qty = float(row.system_qty or 0)
        percents.append((float(row.variance or 0) / system_qty) * 100 if system_qty else 0.0)

    if not percents:
        return {"accuracy_score": 0.0, "avg_variance_percent": 0.0}

    accurate = sum(1 for p in percents if abs(p) <= ACCURATE_VARIANCE_PERCENT)
    return {
        "accuracy_score": round(accurate / len(percents) * 100, 1),
        "avg_variance_percent": round(sum(abs(p) for p in percents) / len(percents), 2),
    }


async def _adjustment_trends(db: AsyncSession, since: datetime) -> list[dict[str, Any]]:
    result = await db.execute(
        select(AdjustmentSnapshot.adjustment_date, AdjustmentSnapshot.adjustment_qty).where(
            AdjustmentSnapshot.adjustment_date >= since
        )
    )
    by_day: dict[str, dict[str, Any]] = {}
    for adjustment_date, qty in result.all():
        day = adjustment_date.date().isoformat()
        bucket = by_day.setdefault(day, {"date": day, "positive": 0.0, "negative": 0.0, "count": 0})
        if qty > 0:
            bucket["positive"] += qty
        else:
            bucket["negative"] += abs(qty)
        bucket["count"] += 1
    return [by_day[day] for day in sorted(by_day, reverse=True)][:30]


# ──────────────────────────────────────────────────────────────────────────
# Listing
# ──────────────────────────────────────────────────────────────────────────


async def list_discrepancies(
    db: AsyncSession,
    status: str | None = "OPEN",
    severity: str | None = None,
    discrepancy_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Discrepancy], int]:
    """Filtered discrepancies, most severe first, then newest."""
    filters = []
    if status:
        filters.append(Discrepancy.status == status)
    if severity:
        filters.append(Discrepancy.severity == severity)
    if discrepancy_type:
        filters.append(Discrepancy.discrepancy_type == discrepancy_type)

    total = await db.scalar(select(func.count()).select_from(Discrepancy).where(*filters))
    result = await db.execute(
        select(Discrepancy)
        .where(*filters)
        .order_by(severity_order, Discrepancy.detected_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


# ──────────────────────────────────────────────────────────────────────────
# Hotspots
# ──────────────────────────────────────────────────────────────────────────


async def get_hotspots(
    db: AsyncSession,
    dimension: str = "location",
    limit: int = 20,
    days: int = 30,
    open_only: bool = False,
) -> list[dict[str, Any]]:
    """Locations or SKUs with the most discrepancies in the window."""
    if dimension not in HOTSPOT_DIMENSIONS:
        raise InvalidInputError(f"Unknown hotspot dimension '{dimension}'. Use: {', '.join(HOTSPOT_DIMENSIONS)}")

    since = datetime.utcnow() - timedelta(days=days)
    query = select(Discrepancy).where(Discrepancy.detected_at >= since)
    if open_only:
        query = query.where(Discrepancy.status == "OPEN")
    result = await db.execute(query)

    groups: dict[str, dict[str, Any]] = defaultdict(
        lambda: {"total_issues": 0, "critical": 0, "high": 0, "total_variance": 0.0, "issue_types": set()}
    )
    for d in result.scalars().all():
        key = d.location_code if dimension == "location" else d.sku
        group = groups[key]
        group["total_issues"] += 1
        group["total_variance"] += abs(d.variance or 0)
        group["issue_types"].add(d.discrepancy_type)
        if d.severity in ("critical", "high"):
            group[d.severity] += 1

    key_name = "location_code" if dimension == "location" else "sku"
    hotspots = [
        {
            key_name: key,
            "total_issues": g["total_issues"],
            "critical": g["critical"],
            "high": g["high"],
            "total_variance": round(g["total_variance"], 2),
            "issue_types": sorted(g["issue_types"]),
        }
        for key, g in groups.items()
    ]
    if dimension == "location":
        hotspots.sort(key=lambda h: (-h["critical"], -h["high"], -h["total_issues"], h[key_name]))
    else:
        hotspots.sort(key=lambda h: (-h["total_variance"], -h["critical"], h[key_name]))
    return hotspots[:limit]


# ──────────────────────────────────────────────────────────────────────────
# Reconciliation + drift
# ──────────────────────────────────────────────────────────────────────────


def _snapshot_to_dict(snap: InventorySnapshot) -> dict[str, Any]:
    return {
        "sku": snap.sku,
        "location_code": snap.location_code,
        "quantity_on_hand": snap.quantity_on_hand,
        "quantity_allocated": snap.quantity_allocated,
        "quantity_available": snap.quantity_available,
        "snapshot_date": snap.snapshot_date,
    }


async def _snapshots_by_key(db: AsyncSession, ingestion_id: uuid.UUID) -> dict[tuple[str, str], InventorySnapshot]:
    if await db.get(IngestionRecord, ingestion_id) is None:
        raise NotFoundError("Ingestion", ingestion_id)
    result = await db.execute(
        select(InventorySnapshot)
        .where(InventorySnapshot.ingestion_id == ingestion_id)
        .order_by(InventorySnapshot.snapshot_date.asc())
    )
    # Later rows for the same key win
    return {(s.sku, s.location_code): s for s in result.scalars().all()}


async def reconcile_snapshots(
    db: AsyncSession,
    ingestion_id: uuid.UUID,
    compare_to: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Compare two inventory snapshot ingestions keyed by sku + location."""
    current = await _snapshots_by_key(db, ingestion_id)
    previous = await _snapshots_by_key(db, compare_to) if compare_to else {}

    additions, changes, removals = [], [], []
    unchanged = 0
    for key in sorted(current):
        curr = current[key]
        prev = previous.get(key)
        if prev is None:
            additions.append(_snapshot_to_dict(curr))
        elif curr.quantity_on_hand != prev.quantity_on_hand:
            changes.append(
                {
                    "sku": curr.sku,
                    "location_code": curr.location_code,
                    "previous_qty": prev.quantity_on_hand,
                    "current_qty": curr.quantity_on_hand,
                    "change": curr.quantity_on_hand - prev.quantity_on_hand,
                }
            )
        else:
            unchanged += 1

    for key in sorted(previous):
        if key not in current:
            removals.append(_snapshot_to_dict(previous[key]))

    return {
        "ingestion_id": str(ingestion_id),
        "compare_to": str(compare_to) if compare_to else None,
        "additions": additions,
        "removals": removals,
        "changes": changes,
        "unchanged": unchanged,
    }


async def analyze_drift(
    db: AsyncSession,
    sku: str | None = None,
    location_code: str | None = None,
    days: int = 30,
) -> dict[str, Any]:
    """Linear trend of on-hand across snapshots in the window."""
    query = select(InventorySnapshot).where(
        InventorySnapshot.snapshot_date >= datetime.utcnow() - timedelta(days=days)
    )
    if sku:
        query = query.where(InventorySnapshot.sku == sku)
    if location_code:
        query = query.where(InventorySnapshot.location_code == location_code)
    result = await db.execute(query.order_by(InventorySnapshot.snapshot_date.asc()))
    history = [
        {"x": i, "y": snap.quantity_on_hand, "date": snap.snapshot_date}
        for i, snap in enumerate(result.scalars().all())
    ]

    if len(history) < 2:
        return {"trend": "insufficient_data", "history": history}

    x = np.array([p["x"] for p in history], dtype=float)
    y = np.array([p["y"] for p in history], dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    slope, intercept = float(slope), float(intercept)

    if slope > DRIFT_STABLE_SLOPE:
        trend = "increasing"
    elif slope < -DRIFT_STABLE_SLOPE:
        trend = "decreasing"
    else:
        trend = "stable"

    return {
        "trend": trend,
        "slope": round(slope, 4),
        "intercept": round(intercept, 4),
        "projected_end_qty": round(slope * (len(history) + days) + intercept, 2),
        "history": history,
    }
