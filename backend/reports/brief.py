"""
Operations Brief

A compact periodic rollup built from what the detector and recommender
have already written. Read-only; formatting for people is left to callers.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from actions.engine import cycle_count_list
from db.models import ActionRecommendation, Discrepancy
from truth.dashboard import get_hotspots
from truth.detector import SEVERITY_RANK

logger = structlog.get_logger()

TOP_LOCATIONS = 5
CYCLE_COUNT_PREVIEW = 10


async def compile_brief(db: AsyncSession, days: int = 7) -> dict[str, Any]:
    now = datetime.utcnow()
    since = now - timedelta(days=days)

    open_result = await db.execute(
        select(Discrepancy.severity, Discrepancy.discrepancy_type).where(Discrepancy.status == "OPEN")
    )
    open_rows = open_result.all()
    by_severity = Counter(severity for severity, _ in open_rows)
    by_type = Counter(dtype for _, dtype in open_rows)

    detected = await db.scalar(select(func.count(Discrepancy.discrepancy_id)).where(Discrepancy.detected_at >= since)) or 0

    pending_result = await db.execute(
        select(ActionRecommendation.action_type, func.count())
        .where(ActionRecommendation.status == "PENDING")
        .group_by(ActionRecommendation.action_type)
    )
    pending_by_type = {action_type: count for action_type, count in pending_result.all()}

    top_locations = await get_hotspots(db, dimension="location", limit=TOP_LOCATIONS, days=days)
    cycle_counts = await cycle_count_list(db, max_tasks=CYCLE_COUNT_PREVIEW)

    logger.info("reports.brief_compiled", days=days, open=len(open_rows), detected=detected)
    return {
        "generated_at": now.isoformat(),
        "period_days": days,
        "period_start": since.isoformat(),
        "open_discrepancies": {
            "total": len(open_rows),
            "by_severity": {s: by_severity.get(s, 0) for s in sorted(SEVERITY_RANK, key=SEVERITY_RANK.get)},
            "by_type": dict(sorted(by_type.items())),
        },
        "detected_in_period": detected,
        "pending_actions": {
            "total": sum(pending_by_type.values()),
            "by_type": dict(sorted(pending_by_type.items())),
        },
        "top_locations": top_locations,
        "cycle_count_preview": cycle_counts["tasks"],
    }
