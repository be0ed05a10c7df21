"""
Tests for the Root-Cause Correlator.

Covers:
  - Individual heuristics (pure)
  - Investigation window and operator matching
  - Root cause confirmation (atomic, validated)
  - Location / operator analysis
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidInputError, NotFoundError
from db.models import AdjustmentSnapshot, Discrepancy, Investigation, TransactionSnapshot
from root_cause.correlator import (
    analyze_location,
    analyze_operator,
    analyze_possible_causes,
    confirm_root_cause,
    investigate,
    recommend_next_steps,
)

DISCREPANCY = {"sku": "SKU-0001", "location_code": "A-01-01", "variance": -20}


def _adjustment(qty, user="jdoe"):
    return {"adjustment_qty": qty, "user_id": user}


def _heuristics(causes):
    return [c["heuristic"] for c in causes]


# ── Heuristics ─────────────────────────────────────────────────────────


class TestPossibleCauses:
    def test_no_evidence_no_causes(self):
        assert analyze_possible_causes(DISCREPANCY, [], [], [], {}, 0, 0) == []

    def test_three_adjustments_flag_process(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-1, None)] * 3, [], {}, 0, 0)
        assert _heuristics(causes) == ["adjustment_activity"]
        assert causes[0]["category"] == "process"
        assert causes[0]["confidence"] == "medium"

    def test_large_net_adjustment_flags_process(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-15, None)], [], {}, 0, 0)
        assert _heuristics(causes) == ["adjustment_activity"]

    def test_small_single_adjustment_ignored(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-2, None)], [], {}, 0, 0)
        assert causes == []

    def test_operator_concentration_medium_then_high(self):
        three = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-1)] * 3, [], {}, 0, 0)
        five = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-1)] * 5, [], {}, 0, 0)
        assert [c["confidence"] for c in three if c["category"] == "human"] == ["medium"]
        assert [c["confidence"] for c in five if c["category"] == "human"] == ["high"]

    def test_operator_name_used_when_matched(self):
        operators = {"jdoe": {"full_name": "Jane Doe"}}
        causes = analyze_possible_causes(DISCREPANCY, [], [_adjustment(-1)] * 3, [], operators, 0, 0)
        human = next(c for c in causes if c["category"] == "human")
        assert "Jane Doe" in human["description"]

    def test_receive_without_putaway(self):
        causes = analyze_possible_causes(DISCREPANCY, [{"type": "RECEIVE"}], [], [], {}, 0, 0)
        assert _heuristics(causes) == ["receive_without_putaway"]
        assert causes[0]["confidence"] == "high"

    def test_receive_with_putaway_ok(self):
        causes = analyze_possible_causes(DISCREPANCY, [{"type": "RECEIVE"}, {"type": "PUTAWAY"}], [], [], {}, 0, 0)
        assert causes == []

    def test_all_negative_counts(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [], [{"variance": -3}, {"variance": -1}], {}, 0, 0)
        assert "unrecorded consumption" in causes[0]["description"]

    def test_mixed_counts_ignored(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [], [{"variance": -3}, {"variance": 2}], {}, 0, 0)
        assert causes == []

    def test_location_and_sku_hotspots(self):
        causes = analyze_possible_causes(DISCREPANCY, [], [], [], {}, 3, 3)
        assert _heuristics(causes) == ["location_hotspot", "sku_hotspot"]
        assert causes[0]["category"] == "location"

    def test_all_applicable_fire_sorted_by_confidence(self):
        causes = analyze_possible_causes(
            DISCREPANCY,
            [{"type": "RECEIVE"}],
            [_adjustment(-1)] * 3,
            [{"variance": -4}],
            {},
            3,
            3,
        )
        assert len(causes) == 6
        ranks = [{"high": 0, "medium": 1}[c["confidence"]] for c in causes]
        assert ranks == sorted(ranks)

    def test_next_steps_start_with_cycle_count(self):
        steps = recommend_next_steps(DISCREPANCY, [{"category": "human"}, {"category": "location"}])
        assert steps[0]["action"] == "CYCLE_COUNT"
        actions = [s["action"] for s in steps]
        assert "TRAINING_REVIEW" in actions
        assert "LOCATION_AUDIT" in actions
        assert "ADJUSTMENT" in actions


# ── Investigation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestInvestigate:
    async def test_unknown_discrepancy(self, test_db):
        with pytest.raises(NotFoundError):
            await investigate(test_db, uuid.uuid4())

    async def test_window_and_operators(self, test_db, seeded_db, ingestion, make_discrepancy):
        detected = datetime.utcnow()
        discrepancy = await make_discrepancy(detected_at=detected)
        for days_ago in (1, 2, 3):
            test_db.add(
                AdjustmentSnapshot(
                    ingestion_id=ingestion.ingestion_id,
                    sku="SKU-0001",
                    location_code="A-01-01",
                    adjustment_qty=-2,
                    reason="damaged",
                    user_id="jdoe",
                    adjustment_date=detected - timedelta(days=days_ago),
                )
            )
        # Outside the 7 day window
        test_db.add(
            AdjustmentSnapshot(
                ingestion_id=ingestion.ingestion_id,
                sku="SKU-0001",
                location_code="A-01-01",
                adjustment_qty=-50,
                reason="old",
                user_id="jdoe",
                adjustment_date=detected - timedelta(days=10),
            )
        )
        test_db.add(
            TransactionSnapshot(
                ingestion_id=ingestion.ingestion_id,
                transaction_type="RECEIVE",
                sku="SKU-0001",
                to_location="A-01-01",
                quantity=24,
                user_id="ghost",
                transaction_date=detected - timedelta(days=1),
            )
        )
        await test_db.commit()

        result = await investigate(test_db, discrepancy.discrepancy_id)

        assert len(result["related_adjustments"]) == 3
        assert len(result["related_transactions"]) == 1
        assert [op["username"] for op in result["involved_operators"]] == ["jdoe"]
        assert result["unmatched_operator_ids"] == ["ghost"]
        heuristics = _heuristics(result["possible_causes"])
        assert "operator_concentration" in heuristics
        assert "receive_without_putaway" in heuristics
        timestamps = [e["timestamp"] for e in result["timeline"]]
        assert timestamps == sorted(timestamps)

    async def test_location_hotspot_counts_other_open(self, test_db, make_discrepancy):
        target = await make_discrepancy(sku="S0")
        for i in range(3):
            await make_discrepancy(sku=f"S{i + 1}")

        result = await investigate(test_db, target.discrepancy_id)

        assert "location_hotspot" in _heuristics(result["possible_causes"])


@pytest.mark.asyncio
class TestConfirmRootCause:
    async def test_confirm_moves_to_investigated(self, test_db, make_discrepancy):
        discrepancy = await make_discrepancy()

        investigation = await confirm_root_cause(
            test_db, discrepancy.discrepancy_id, "Mis-slotted on receipt", "process", assigned_to="lead"
        )

        assert investigation.status == "CONFIRMED"
        await test_db.refresh(discrepancy)
        assert discrepancy.status == "INVESTIGATED"
        assert discrepancy.root_cause == "Mis-slotted on receipt"
        assert discrepancy.root_cause_category == "process"

    async def test_unknown_category_rejected(self, test_db, make_discrepancy):
        discrepancy = await make_discrepancy()
        with pytest.raises(InvalidInputError):
            await confirm_root_cause(test_db, discrepancy.discrepancy_id, "x", "aliens")

    async def test_failure_rolls_back_both_writes(self, test_db, make_discrepancy, monkeypatch):
        discrepancy_id = (await make_discrepancy()).discrepancy_id

        async def failing_commit(self):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(AsyncSession, "commit", failing_commit)
        with pytest.raises(RuntimeError):
            await confirm_root_cause(test_db, discrepancy_id, "x", "process")
        monkeypatch.undo()

        assert await test_db.scalar(select(Investigation)) is None
        status = await test_db.scalar(select(Discrepancy.status).where(Discrepancy.discrepancy_id == discrepancy_id))
        assert status == "OPEN"


@pytest.mark.asyncio
class TestAnalysis:
    async def test_location_analysis(self, test_db, make_discrepancy):
        await make_discrepancy(severity="high")
        await make_discrepancy(sku="SKU-0002", severity="low", discrepancy_type="negative_on_hand")

        result = await analyze_location(test_db, "A-01-01")

        assert result["metrics"]["total_discrepancies"] == 2
        assert result["discrepancies_by_severity"] == {"high": 1, "low": 1}

    async def test_operator_analysis(self, test_db, seeded_db, ingestion):
        for qty in (-2, -4):
            test_db.add(
                AdjustmentSnapshot(
                    ingestion_id=ingestion.ingestion_id,
                    sku="SKU-0001",
                    location_code="A-01-01",
                    adjustment_qty=qty,
                    reason="damaged",
                    user_id="jdoe",
                )
            )
        await test_db.commit()

        result = await analyze_operator(test_db, "jdoe")

        assert result["user"]["full_name"] == "Jane Doe"
        assert result["metrics"]["total_adjustments"] == 2
        assert result["metrics"]["avg_adjustment_size"] == 3
        assert result["adjustments_by_reason"] == {"damaged": 2}
