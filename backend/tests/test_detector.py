"""
Tests for the Discrepancy Detector.

Covers:
  - Cycle count severity classification and reporting threshold
  - Negative on-hand detection
  - Idempotent re-runs (natural-key dedup)
  - Order-independent collapse of duplicate findings
  - Transaction gaps, adjustment spikes and on-hand drift
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from db.models import AdjustmentSnapshot, CycleCountSnapshot, Discrepancy, InventorySnapshot, TransactionSnapshot
from ingestion.loader import compute_variance
from ingestion.service import ingest_upload
from truth.detector import (
    ADJUSTMENT_SPIKE,
    CYCLE_COUNT_VARIANCE,
    DRIFT_DETECTED,
    NEGATIVE_ON_HAND,
    TRANSACTION_GAP,
    CreationOutcome,
    Finding,
    classify_gap_severity,
    classify_variance_severity,
    collapse_findings,
    find_adjustment_spikes,
    find_drift,
    find_transaction_gaps,
    is_reportable_variance,
    run_analysis,
)

# ── Severity ───────────────────────────────────────────────────────────


class TestVarianceSeverity:
    def test_low_six_percent(self):
        assert classify_variance_severity(6) == "low"

    def test_medium_fifteen_percent(self):
        assert classify_variance_severity(15) == "medium"

    def test_high_twenty_five_percent(self):
        assert classify_variance_severity(25) == "high"

    def test_boundaries_are_exclusive(self):
        assert classify_variance_severity(10) == "low"
        assert classify_variance_severity(20) == "medium"

    def test_negative_uses_absolute(self):
        assert classify_variance_severity(-30) == "high"
        assert classify_variance_severity(-12) == "medium"


class TestReportable:
    def test_below_both_thresholds(self):
        assert not is_reportable_variance(4.9, 4.9)

    def test_percent_over_threshold(self):
        assert is_reportable_variance(-6, -6.0)

    def test_units_over_threshold_with_small_percent(self):
        assert is_reportable_variance(11, 1.1)


# ── Collapse ───────────────────────────────────────────────────────────


def _finding(variance, snapshot_id, sku="A", location="L1"):
    return Finding(
        discrepancy_type=CYCLE_COUNT_VARIANCE,
        severity="low",
        sku=sku,
        location_code=location,
        variance=variance,
        description="",
        evidence={"snapshot_id": snapshot_id},
    )


class TestCollapseFindings:
    def test_keeps_largest_absolute_variance(self):
        collapsed = collapse_findings([_finding(-5, "a"), _finding(-30, "b"), _finding(12, "c")])
        assert len(collapsed) == 1
        assert collapsed[0].variance == -30

    def test_result_does_not_depend_on_input_order(self):
        findings = [_finding(8, "b"), _finding(-8, "a"), _finding(3, "c", sku="B")]
        forward = collapse_findings(findings)
        backward = collapse_findings(list(reversed(findings)))
        assert [(f.sku, f.variance) for f in forward] == [(f.sku, f.variance) for f in backward]
        assert forward[0].evidence["snapshot_id"] == "a"


# ── Detection against the store ────────────────────────────────────────


async def _add_count(db, ingestion, system_qty, counted_qty, sku="SKU-0001", location="A-01-01", counter="jdoe"):
    variance, variance_percent = compute_variance(system_qty, counted_qty)
    db.add(
        CycleCountSnapshot(
            ingestion_id=ingestion.ingestion_id,
            sku=sku,
            location_code=location,
            system_qty=system_qty,
            counted_qty=counted_qty,
            variance=variance,
            variance_percent=variance_percent,
            counter_id=counter,
            count_date=datetime.utcnow() - timedelta(hours=1),
        )
    )
    await db.commit()


@pytest.mark.asyncio
class TestRunAnalysis:
    async def test_negative_on_hand_scenario(self, test_db, tmp_path):
        await ingest_upload(test_db, "snap.csv", b"sku,location,quantityOnHand\nX,L,-5\n", upload_dir=tmp_path)

        summary = await run_analysis(test_db)

        assert summary.discrepancies_created == 1
        discrepancy = await test_db.scalar(select(Discrepancy))
        assert discrepancy.discrepancy_type == NEGATIVE_ON_HAND
        assert discrepancy.severity == "critical"
        assert discrepancy.variance == -5
        assert discrepancy.expected_qty == 0
        assert discrepancy.variance_percent == -100

    async def test_cycle_count_shortage_is_high(self, test_db, ingestion):
        await _add_count(test_db, ingestion, 100, 70)

        await run_analysis(test_db)

        discrepancy = await test_db.scalar(select(Discrepancy))
        assert discrepancy.discrepancy_type == CYCLE_COUNT_VARIANCE
        assert discrepancy.severity == "high"
        assert discrepancy.variance == -30

    async def test_small_variance_not_reported(self, test_db, ingestion):
        await _add_count(test_db, ingestion, 100, 104.9)

        summary = await run_analysis(test_db)

        assert summary.findings_count == 0
        assert await test_db.scalar(select(func.count()).select_from(Discrepancy)) == 0

    async def test_severity_grid(self, test_db, ingestion):
        await _add_count(test_db, ingestion, 100, 106, sku="LOW")
        await _add_count(test_db, ingestion, 100, 85, sku="MED")
        await _add_count(test_db, ingestion, 100, 125, sku="HIGH")

        await run_analysis(test_db)

        rows = (await test_db.execute(select(Discrepancy.sku, Discrepancy.severity))).all()
        assert dict(rows) == {"LOW": "low", "MED": "medium", "HIGH": "high"}

    async def test_second_run_creates_nothing(self, test_db, ingestion):
        test_db.add(
            InventorySnapshot(ingestion_id=ingestion.ingestion_id, sku="X", location_code="L", quantity_on_hand=-3)
        )
        await test_db.commit()
        await _add_count(test_db, ingestion, 100, 70)

        first = await run_analysis(test_db)
        second = await run_analysis(test_db)

        assert first.discrepancies_created == 2
        assert second.discrepancies_created == 0
        assert second.skipped == 2
        assert second.failed == 0
        assert await test_db.scalar(select(func.count()).select_from(Discrepancy)) == 2

    async def test_duplicate_snapshots_collapse_to_one(self, test_db, ingestion):
        await _add_count(test_db, ingestion, 100, 80)
        await _add_count(test_db, ingestion, 100, 60)

        summary = await run_analysis(test_db)

        assert summary.findings_count == 2
        assert summary.discrepancies_created == 1
        discrepancy = await test_db.scalar(select(Discrepancy))
        assert discrepancy.variance == -40

    async def test_closed_discrepancy_does_not_block_new_one(self, test_db, ingestion, make_discrepancy):
        await make_discrepancy(status="RESOLVED", discrepancy_type=CYCLE_COUNT_VARIANCE, severity="low")
        await _add_count(test_db, ingestion, 100, 70)

        summary = await run_analysis(test_db)

        assert summary.discrepancies_created == 1

    async def test_preview_outcomes(self, test_db, ingestion):
        await _add_count(test_db, ingestion, 100, 70)
        summary = await run_analysis(test_db)
        assert summary.findings[0]["outcome"] == CreationOutcome.CREATED.value


# ── Pattern detectors ──────────────────────────────────────────────────


async def _add_snapshot(db, ingestion, qty, days_ago, sku="SKU-0001", location="A-01-01"):
    db.add(
        InventorySnapshot(
            ingestion_id=ingestion.ingestion_id,
            sku=sku,
            location_code=location,
            quantity_on_hand=qty,
            snapshot_date=datetime.utcnow() - timedelta(days=days_ago),
        )
    )
    await db.commit()


async def _add_transaction(db, ingestion, qty, days_ago, from_location=None, to_location=None, sku="SKU-0001"):
    db.add(
        TransactionSnapshot(
            ingestion_id=ingestion.ingestion_id,
            transaction_type="MOVE",
            sku=sku,
            from_location=from_location,
            to_location=to_location,
            quantity=qty,
            transaction_date=datetime.utcnow() - timedelta(days=days_ago),
        )
    )
    await db.commit()


async def _add_adjustment(db, ingestion, qty, days_ago, reason="Damaged", sku="SKU-0001", location="A-01-01"):
    db.add(
        AdjustmentSnapshot(
            ingestion_id=ingestion.ingestion_id,
            sku=sku,
            location_code=location,
            adjustment_qty=qty,
            reason=reason,
            adjustment_date=datetime.utcnow() - timedelta(days=days_ago),
        )
    )
    await db.commit()


class TestGapSeverity:
    def test_bands(self):
        assert classify_gap_severity(-5) == "low"
        assert classify_gap_severity(10) == "low"
        assert classify_gap_severity(-15) == "medium"
        assert classify_gap_severity(101) == "high"


@pytest.mark.asyncio
class TestTransactionGaps:
    async def test_unexplained_drop(self, test_db, ingestion):
        await _add_snapshot(test_db, ingestion, 100, days_ago=3)
        await _add_snapshot(test_db, ingestion, 80, days_ago=1)
        await _add_transaction(test_db, ingestion, 5, days_ago=2, from_location="A-01-01", to_location="B-02-02")

        findings = await find_transaction_gaps(test_db)

        assert len(findings) == 1
        gap = findings[0]
        assert gap.discrepancy_type == TRANSACTION_GAP
        assert gap.expected_qty == -5
        assert gap.actual_qty == -20
        assert gap.variance == -15
        assert gap.variance_percent == pytest.approx(-15.0)
        assert gap.severity == "medium"

    async def test_movements_into_location_count_positive(self, test_db, ingestion):
        await _add_snapshot(test_db, ingestion, 10, days_ago=3)
        await _add_snapshot(test_db, ingestion, 40, days_ago=1)
        await _add_transaction(test_db, ingestion, 30, days_ago=2, to_location="A-01-01")

        assert await find_transaction_gaps(test_db) == []

    async def test_movement_before_previous_snapshot_is_ignored(self, test_db, ingestion):
        await _add_transaction(test_db, ingestion, 20, days_ago=5, from_location="A-01-01")
        await _add_snapshot(test_db, ingestion, 100, days_ago=3)
        await _add_snapshot(test_db, ingestion, 80, days_ago=1)

        findings = await find_transaction_gaps(test_db)

        assert [f.variance for f in findings] == [-20]

    async def test_single_snapshot_has_nothing_to_compare(self, test_db, ingestion):
        await _add_snapshot(test_db, ingestion, 100, days_ago=1)
        assert await find_transaction_gaps(test_db) == []


@pytest.mark.asyncio
class TestAdjustmentSpikes:
    async def test_volume_spike(self, test_db, ingestion):
        for days_ago in range(2, 8):
            await _add_adjustment(test_db, ingestion, -2, days_ago=days_ago)
        await _add_adjustment(test_db, ingestion, -40, days_ago=1, reason="Shrink")

        findings = await find_adjustment_spikes(test_db)

        assert len(findings) == 1
        spike = findings[0]
        assert spike.discrepancy_type == ADJUSTMENT_SPIKE
        assert spike.severity == "medium"
        assert spike.actual_qty == 40
        assert spike.expected_qty == pytest.approx(52 / 7)
        assert spike.evidence["z_score"] > 2
        assert spike.evidence["reasons"] == ["Shrink"]

    async def test_many_adjustments_in_one_day(self, test_db, ingestion):
        for _ in range(6):
            await _add_adjustment(test_db, ingestion, -1, days_ago=1)

        findings = await find_adjustment_spikes(test_db)

        assert len(findings) == 1
        assert findings[0].evidence["daily_count"] == 6
        assert findings[0].evidence["z_score"] is None

    async def test_steady_volume_is_quiet(self, test_db, ingestion):
        for days_ago in range(1, 8):
            await _add_adjustment(test_db, ingestion, -2, days_ago=days_ago)
        assert await find_adjustment_spikes(test_db) == []


@pytest.mark.asyncio
class TestDrift:
    async def test_steady_decline(self, test_db, ingestion):
        for days_ago, qty in zip(range(7, 0, -1), (100, 95, 90, 85, 80, 75, 70)):
            await _add_snapshot(test_db, ingestion, qty, days_ago=days_ago)

        findings = await find_drift(test_db)

        assert len(findings) == 1
        drift = findings[0]
        assert drift.discrepancy_type == DRIFT_DETECTED
        assert drift.expected_qty == 100
        assert drift.actual_qty == 70
        assert drift.variance_percent == pytest.approx(-30.0)
        assert drift.severity == "high"
        assert drift.evidence["data_points"] == 7

    async def test_needs_a_week_of_points(self, test_db, ingestion):
        for days_ago, qty in zip(range(6, 0, -1), (100, 95, 90, 85, 80, 75)):
            await _add_snapshot(test_db, ingestion, qty, days_ago=days_ago)
        assert await find_drift(test_db) == []

    async def test_run_analysis_includes_pattern_findings(self, test_db, ingestion):
        for days_ago, qty in zip(range(7, 0, -1), (100, 95, 90, 85, 80, 75, 70)):
            await _add_snapshot(test_db, ingestion, qty, days_ago=days_ago)

        summary = await run_analysis(test_db)

        types = set((await test_db.execute(select(Discrepancy.discrepancy_type))).scalars().all())
        assert types == {TRANSACTION_GAP, DRIFT_DETECTED}
        # six consecutive pairs collapse to one open gap
        assert summary.discrepancies_created == 2
