"""
Discrepancy Detector — rule-based scan over snapshot facts.

Discrepancy Types:
  - negative_on_hand: snapshot shows on-hand below zero (always critical)
  - cycle_count_variance: counted vs. system differs by more than 5% or
    more than 10 units; severity by |variance_percent|
  - transaction_gap: on-hand change between two snapshots not explained by
    the movements recorded in between
  - adjustment_spike: a day of adjustments far above the usual volume for
    the sku + location, or more than 5 adjustments in one day
  - drift_detected: on-hand moving steadily over the lookback window
    without a matching explanation

The scan is stateless and runs on demand. Findings are collapsed per
natural key (type + sku + location) before creation so the set of new
discrepancies does not depend on scan order. Each creation runs in its
own SAVEPOINT; the partial unique index on open discrepancies turns a
repeat finding into a SKIPPED outcome rather than an error.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import pandas as pd
import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.errors import is_unique_violation
from db.models import AdjustmentSnapshot, CycleCountSnapshot, Discrepancy, InventorySnapshot, TransactionSnapshot

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────────────────
# Detection Rules
# ──────────────────────────────────────────────────────────────────────────

NEGATIVE_ON_HAND = "negative_on_hand"
CYCLE_COUNT_VARIANCE = "cycle_count_variance"
TRANSACTION_GAP = "transaction_gap"
ADJUSTMENT_SPIKE = "adjustment_spike"
DRIFT_DETECTED = "drift_detected"

# Reported when |variance_percent| > percent OR |variance| > units
CYCLE_COUNT_REPORT_THRESHOLDS = {"percent": 5.0, "units": 10.0}

SEVERITY_THRESHOLDS = {
    "variance_percent": {
        "high": 20.0,  # |vp| > 20
        "medium": 10.0,  # |vp| > 10
    },
}

# Unexplained snapshot change, in units
TRANSACTION_GAP_THRESHOLDS = {
    "report": 1.0,  # |gap| > 1
    "high": 100.0,  # |gap| > 100
    "medium": 10.0,  # |gap| > 10
}

# Daily adjustment volume vs. the sku + location's own history
ADJUSTMENT_SPIKE_THRESHOLDS = {
    "z_score": 2.0,
    "high_z_score": 3.0,
    "daily_count": 5,
}

# Start vs. end of the lookback window
DRIFT_THRESHOLDS = {
    "min_days": 7,
    "units": 5.0,
    "percent": 5.0,
}

SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

MAX_PREVIEW_FINDINGS = 20


def classify_variance_severity(variance_percent: float) -> str:
    """Classify cycle count severity by absolute variance percent."""
    thresholds = SEVERITY_THRESHOLDS["variance_percent"]
    vp = abs(variance_percent)
    if vp > thresholds["high"]:
        return "high"
    elif vp > thresholds["medium"]:
        return "medium"
    return "low"


def is_reportable_variance(variance: float, variance_percent: float) -> bool:
    return (
        abs(variance_percent) > CYCLE_COUNT_REPORT_THRESHOLDS["percent"]
        or abs(variance) > CYCLE_COUNT_REPORT_THRESHOLDS["units"]
    )


class CreationOutcome(str, Enum):
    """Result of attempting to persist one discrepancy or action."""

    CREATED = "created"
    SKIPPED = "skipped"  # an open record with the same natural key already exists
    FAILED = "failed"


@dataclass
class Finding:
    discrepancy_type: str
    severity: str
    sku: str
    location_code: str
    variance: float
    description: str
    expected_qty: float | None = None
    actual_qty: float | None = None
    variance_percent: float | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    outcome: CreationOutcome | None = None

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.discrepancy_type, self.sku, self.location_code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.discrepancy_type,
            "severity": self.severity,
            "sku": self.sku,
            "location_code": self.location_code,
            "expected_qty": self.expected_qty,
            "actual_qty": self.actual_qty,
            "variance": self.variance,
            "variance_percent": self.variance_percent,
            "description": self.description,
            "outcome": self.outcome.value if self.outcome else None,
        }


@dataclass
class AnalysisSummary:
    analysis_id: uuid.UUID
    findings_count: int
    discrepancies_created: int
    skipped: int
    failed: int
    findings: list[dict[str, Any]] = field(default_factory=list)


# ──────────────────────────────────────────────────────────────────────────
# Detectors
# ──────────────────────────────────────────────────────────────────────────


async def find_negative_on_hand(db: AsyncSession, limit: int = 100) -> list[Finding]:
    """Up to `limit` most-negative on-hand snapshot rows."""
    result = await db.execute(
        select(InventorySnapshot)
        .where(InventorySnapshot.quantity_on_hand < 0)
        .order_by(InventorySnapshot.quantity_on_hand.asc(), InventorySnapshot.snapshot_date.desc())
        .limit(limit)
    )

    findings = []
    for snap in result.scalars().all():
        findings.append(
            Finding(
                discrepancy_type=NEGATIVE_ON_HAND,
                severity="critical",
                sku=snap.sku,
                location_code=snap.location_code,
                expected_qty=0.0,
                actual_qty=snap.quantity_on_hand,
                variance=snap.quantity_on_hand,
                variance_percent=-100.0,
                description=(
                    f"Negative on-hand quantity ({snap.quantity_on_hand:g}) "
                    f"for {snap.sku} at {snap.location_code}"
                ),
                evidence={
                    "snapshot_id": str(snap.snapshot_id),
                    "ingestion_id": str(snap.ingestion_id),
                    "snapshot_date": snap.snapshot_date.isoformat() if snap.snapshot_date else None,
                },
            )
        )
    return findings


async def find_cycle_count_variances(db: AsyncSession, limit: int = 100) -> list[Finding]:
    """Cycle counts whose variance exceeds ±5% or 10 units, largest first."""
    result = await db.execute(
        select(CycleCountSnapshot)
        .where(
            or_(
                func.abs(CycleCountSnapshot.variance_percent) > CYCLE_COUNT_REPORT_THRESHOLDS["percent"],
                func.abs(CycleCountSnapshot.variance) > CYCLE_COUNT_REPORT_THRESHOLDS["units"],
            )
        )
        .order_by(func.abs(CycleCountSnapshot.variance_percent).desc(), CycleCountSnapshot.count_date.desc())
        .limit(limit)
    )

    findings = []
    for count in result.scalars().all():
        findings.append(
            Finding(
                discrepancy_type=CYCLE_COUNT_VARIANCE,
                severity=classify_variance_severity(count.variance_percent),
                sku=count.sku,
                location_code=count.location_code,
                expected_qty=count.system_qty,
                actual_qty=count.counted_qty,
                variance=count.variance,
                variance_percent=count.variance_percent,
                description=(
                    f"Cycle count variance of {count.variance:+g} units "
                    f"({count.variance_percent:+.1f}%) for {count.sku} at {count.location_code}"
                ),
                evidence={
                    "snapshot_id": str(count.snapshot_id),
                    "ingestion_id": str(count.ingestion_id),
                    "counter_id": count.counter_id,
                    "count_date": count.count_date.isoformat() if count.count_date else None,
                },
            )
        )
    return findings


def classify_gap_severity(gap: float) -> str:
    magnitude = abs(gap)
    if magnitude > TRANSACTION_GAP_THRESHOLDS["high"]:
        return "high"
    elif magnitude > TRANSACTION_GAP_THRESHOLDS["medium"]:
        return "medium"
    return "low"


async def find_transaction_gaps(db: AsyncSession, days: int = 30, limit: int = 50) -> list[Finding]:
    """
    Compare each pair of consecutive snapshots for a sku + location with the
    net movement recorded between them. Movements into the location count
    positive, movements out count negative; a transaction belongs to the
    pair when prev_date < transaction_date <= curr_date.
    """
    since = datetime.utcnow() - timedelta(days=days)
    snap_result = await db.execute(
        select(
            InventorySnapshot.snapshot_id,
            InventorySnapshot.sku,
            InventorySnapshot.location_code,
            InventorySnapshot.quantity_on_hand,
            InventorySnapshot.snapshot_date,
        ).where(InventorySnapshot.snapshot_date >= since)
    )
    snaps = pd.DataFrame(
        [tuple(r) for r in snap_result.all()], columns=["snapshot_id", "sku", "location_code", "qty", "snapshot_date"]
    )
    if snaps.empty:
        return []

    tx_result = await db.execute(
        select(
            TransactionSnapshot.sku,
            TransactionSnapshot.from_location,
            TransactionSnapshot.to_location,
            TransactionSnapshot.quantity,
            TransactionSnapshot.transaction_date,
        ).where(TransactionSnapshot.transaction_date >= since)
    )
    movements: dict[tuple[str, str], list[tuple[datetime, float]]] = {}
    for sku, from_location, to_location, quantity, transaction_date in tx_result.all():
        qty = float(quantity or 0)
        if to_location:
            movements.setdefault((sku, to_location), []).append((transaction_date, qty))
        if from_location:
            movements.setdefault((sku, from_location), []).append((transaction_date, -qty))

    snaps["snapshot_id"] = snaps["snapshot_id"].astype(str)
    snaps["snapshot_date"] = pd.to_datetime(snaps["snapshot_date"])
    snaps = snaps.sort_values(["sku", "location_code", "snapshot_date", "snapshot_id"])
    by_key = snaps.groupby(["sku", "location_code"])
    snaps["prev_qty"] = by_key["qty"].shift()
    snaps["prev_date"] = by_key["snapshot_date"].shift()
    pairs = snaps.dropna(subset=["prev_qty"])

    gaps = []
    for row in pairs.itertuples(index=False):
        prev_date = row.prev_date.to_pydatetime()
        curr_date = row.snapshot_date.to_pydatetime()
        tx_change = float(
            sum(qty for when, qty in movements.get((row.sku, row.location_code), []) if prev_date < when <= curr_date)
        )
        snapshot_change = float(row.qty) - float(row.prev_qty)
        gap = snapshot_change - tx_change
        if abs(gap) > TRANSACTION_GAP_THRESHOLDS["report"]:
            gaps.append((row, prev_date, curr_date, snapshot_change, tx_change, gap))

    gaps.sort(key=lambda g: (-abs(g[5]), g[0].snapshot_id))
    findings = []
    for row, prev_date, curr_date, snapshot_change, tx_change, gap in gaps[:limit]:
        prev_qty = float(row.prev_qty)
        findings.append(
            Finding(
                discrepancy_type=TRANSACTION_GAP,
                severity=classify_gap_severity(gap),
                sku=row.sku,
                location_code=row.location_code,
                expected_qty=tx_change,
                actual_qty=snapshot_change,
                variance=gap,
                variance_percent=gap / prev_qty * 100 if prev_qty != 0 else 0.0,
                description=(
                    f"On-hand changed by {snapshot_change:+g} between snapshots but recorded "
                    f"movements explain {tx_change:+g} for {row.sku} at {row.location_code}"
                ),
                evidence={
                    "snapshot_id": row.snapshot_id,
                    "previous_qty": prev_qty,
                    "current_qty": float(row.qty),
                    "previous_date": prev_date.isoformat(),
                    "current_date": curr_date.isoformat(),
                },
            )
        )
    return findings


async def find_adjustment_spikes(db: AsyncSession, days: int = 30, limit: int = 50) -> list[Finding]:
    """
    Days whose total |adjustment_qty| sits more than 2 standard deviations
    above the sku + location's daily mean, or that carry more than 5
    adjustments. A location with no spread in volume has no z-score and is
    only caught by the count rule.
    """
    since = datetime.utcnow() - timedelta(days=days)
    result = await db.execute(
        select(
            AdjustmentSnapshot.sku,
            AdjustmentSnapshot.location_code,
            AdjustmentSnapshot.adjustment_qty,
            AdjustmentSnapshot.reason,
            AdjustmentSnapshot.adjustment_date,
        ).where(AdjustmentSnapshot.adjustment_date >= since)
    )
    frame = pd.DataFrame(
        [tuple(r) for r in result.all()], columns=["sku", "location_code", "qty", "reason", "adjustment_date"]
    )
    if frame.empty:
        return []

    keys = ["sku", "location_code", "day"]
    frame["day"] = pd.to_datetime(frame["adjustment_date"]).dt.date
    frame["volume"] = frame["qty"].astype(float).abs()
    daily = (
        frame.groupby(keys)
        .agg(daily_volume=("volume", "sum"), daily_count=("volume", "size"))
        .reset_index()
    )
    reasons: dict[tuple, set[str]] = {}
    for adj in frame.itertuples(index=False):
        reasons.setdefault((adj.sku, adj.location_code, adj.day), set()).add(adj.reason)

    stats = (
        daily.groupby(["sku", "location_code"])["daily_volume"]
        .agg(avg_volume="mean", stddev_volume="std")
        .reset_index()
    )
    daily = daily.merge(stats, on=["sku", "location_code"])
    spread = daily["stddev_volume"].where(daily["stddev_volume"] > 0)
    daily["z_score"] = (daily["daily_volume"] - daily["avg_volume"]) / spread

    flagged = daily[
        (daily["z_score"] > ADJUSTMENT_SPIKE_THRESHOLDS["z_score"])
        | (daily["daily_count"] > ADJUSTMENT_SPIKE_THRESHOLDS["daily_count"])
    ]
    flagged = flagged.sort_values(
        ["z_score", "daily_volume"], ascending=False, na_position="last"
    ).head(limit)

    findings = []
    for row in flagged.itertuples(index=False):
        avg = float(row.avg_volume)
        volume = float(row.daily_volume)
        z_score = None if pd.isna(row.z_score) else round(float(row.z_score), 2)
        high = z_score is not None and z_score > ADJUSTMENT_SPIKE_THRESHOLDS["high_z_score"]
        variance = volume - avg
        findings.append(
            Finding(
                discrepancy_type=ADJUSTMENT_SPIKE,
                severity="high" if high else "medium",
                sku=row.sku,
                location_code=row.location_code,
                expected_qty=avg,
                actual_qty=volume,
                variance=variance,
                variance_percent=variance / avg * 100 if avg != 0 else 0.0,
                description=(
                    f"{int(row.daily_count)} adjustments totalling {volume:g} units on {row.day.isoformat()} "
                    f"for {row.sku} at {row.location_code} (daily average {avg:.1f})"
                ),
                evidence={
                    "date": row.day.isoformat(),
                    "daily_count": int(row.daily_count),
                    "z_score": z_score,
                    "reasons": sorted(reasons[(row.sku, row.location_code, row.day)]),
                },
            )
        )
    return findings


async def find_drift(db: AsyncSession, days: int = 30, limit: int = 50) -> list[Finding]:
    """
    Sku + locations whose daily average on-hand moved by more than 5 units
    and more than 5% between the first and last day of the window, given at
    least 7 days of snapshots. Severity follows the cycle-count bands.
    """
    since = datetime.utcnow() - timedelta(days=days)
    result = await db.execute(
        select(
            InventorySnapshot.sku,
            InventorySnapshot.location_code,
            InventorySnapshot.quantity_on_hand,
            InventorySnapshot.snapshot_date,
        ).where(InventorySnapshot.snapshot_date >= since)
    )
    frame = pd.DataFrame([tuple(r) for r in result.all()], columns=["sku", "location_code", "qty", "snapshot_date"])
    if frame.empty:
        return []

    frame["day"] = pd.to_datetime(frame["snapshot_date"]).dt.date
    frame["qty"] = frame["qty"].astype(float)
    daily = (
        frame.groupby(["sku", "location_code", "day"])["qty"]
        .mean()
        .reset_index()
        .sort_values(["sku", "location_code", "day"])
    )
    summary = (
        daily.groupby(["sku", "location_code"])
        .agg(
            start_qty=("qty", "first"),
            end_qty=("qty", "last"),
            start_day=("day", "first"),
            end_day=("day", "last"),
            data_points=("qty", "size"),
        )
        .reset_index()
    )
    summary["absolute_drift"] = summary["end_qty"] - summary["start_qty"]
    summary["percent_drift"] = (
        summary["absolute_drift"] / summary["start_qty"].where(summary["start_qty"] != 0) * 100
    ).fillna(0.0)

    flagged = summary[
        (summary["data_points"] >= DRIFT_THRESHOLDS["min_days"])
        & (summary["absolute_drift"].abs() > DRIFT_THRESHOLDS["units"])
        & (summary["percent_drift"].abs() > DRIFT_THRESHOLDS["percent"])
    ]
    flagged = flagged.assign(magnitude=flagged["absolute_drift"].abs())
    flagged = flagged.sort_values(["magnitude", "sku", "location_code"], ascending=[False, True, True]).head(limit)

    findings = []
    for row in flagged.itertuples(index=False):
        percent = float(row.percent_drift)
        drift = float(row.absolute_drift)
        findings.append(
            Finding(
                discrepancy_type=DRIFT_DETECTED,
                severity=classify_variance_severity(percent),
                sku=row.sku,
                location_code=row.location_code,
                expected_qty=float(row.start_qty),
                actual_qty=float(row.end_qty),
                variance=drift,
                variance_percent=percent,
                description=(
                    f"On-hand drifted {drift:+g} units ({percent:+.1f}%) over {int(row.data_points)} days "
                    f"for {row.sku} at {row.location_code}"
                ),
                evidence={
                    "date": row.end_day.isoformat(),
                    "start_date": row.start_day.isoformat(),
                    "data_points": int(row.data_points),
                },
            )
        )
    return findings


def collapse_findings(findings: list[Finding]) -> list[Finding]:
    """
    Keep one finding per natural key: the largest |variance|, ties broken
    by the source snapshot id (or day, for daily rollups). Output is sorted
    by natural key.
    """
    best: dict[tuple[str, str, str], Finding] = {}
    for finding in findings:
        current = best.get(finding.natural_key)
        if current is None or _rank(finding) < _rank(current):
            best[finding.natural_key] = finding
    return [best[key] for key in sorted(best)]


def _rank(finding: Finding) -> tuple[float, str]:
    ref = finding.evidence.get("snapshot_id") or finding.evidence.get("date") or ""
    return (-abs(finding.variance), str(ref))


# ──────────────────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────────────────


async def create_discrepancy(db: AsyncSession, finding: Finding, detected_at: datetime | None = None) -> CreationOutcome:
    """Persist one finding inside a SAVEPOINT and classify the outcome."""
    try:
        async with db.begin_nested():
            db.add(
                Discrepancy(
                    discrepancy_type=finding.discrepancy_type,
                    severity=finding.severity,
                    sku=finding.sku,
                    location_code=finding.location_code,
                    expected_qty=finding.expected_qty,
                    actual_qty=finding.actual_qty,
                    variance=finding.variance,
                    variance_percent=finding.variance_percent,
                    description=finding.description,
                    evidence=finding.evidence,
                    status="OPEN",
                    detected_at=detected_at or datetime.utcnow(),
                )
            )
        return CreationOutcome.CREATED
    except IntegrityError as exc:
        if is_unique_violation(exc):
            return CreationOutcome.SKIPPED
        logger.warning(
            "truth.discrepancy_create_failed",
            type=finding.discrepancy_type,
            sku=finding.sku,
            location_code=finding.location_code,
            error=str(exc.orig),
        )
        return CreationOutcome.FAILED


async def run_analysis(db: AsyncSession) -> AnalysisSummary:
    """
    Full detection pass:
    1. Negative on-hand scan
    2. Cycle count variance scan
    3. Transaction gap, adjustment spike and drift scans over the lookback window
    4. Collapse per natural key
    5. Create each finding (CREATED / SKIPPED / FAILED)
    """
    settings = get_settings()
    analysis_id = uuid.uuid4()
    log = logger.bind(analysis_id=str(analysis_id))

    findings = await find_negative_on_hand(db, settings.detector_negative_limit)
    findings += await find_cycle_count_variances(db, settings.detector_cycle_count_limit)
    findings += await find_transaction_gaps(db, settings.detector_lookback_days, settings.detector_pattern_limit)
    findings += await find_adjustment_spikes(db, settings.detector_lookback_days, settings.detector_pattern_limit)
    findings += await find_drift(db, settings.detector_lookback_days, settings.detector_pattern_limit)
    unique_findings = collapse_findings(findings)

    detected_at = datetime.utcnow()
    for finding in unique_findings:
        finding.evidence["analysis_id"] = str(analysis_id)
        finding.outcome = await create_discrepancy(db, finding, detected_at)
    await db.commit()

    created = sum(1 for f in unique_findings if f.outcome == CreationOutcome.CREATED)
    skipped = sum(1 for f in unique_findings if f.outcome == CreationOutcome.SKIPPED)
    failed = sum(1 for f in unique_findings if f.outcome == CreationOutcome.FAILED)

    log.info(
        "truth.analysis_completed",
        findings=len(findings),
        unique_findings=len(unique_findings),
        created=created,
        skipped=skipped,
        failed=failed,
    )

    preview = sorted(unique_findings, key=lambda f: (SEVERITY_RANK[f.severity], _rank(f), f.natural_key))
    return AnalysisSummary(
        analysis_id=analysis_id,
        findings_count=len(findings),
        discrepancies_created=created,
        skipped=skipped,
        failed=failed,
        findings=[f.to_dict() for f in preview[:MAX_PREVIEW_FINDINGS]],
    )
