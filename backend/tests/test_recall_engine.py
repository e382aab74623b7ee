"""
Tests for the recall engine.

find_recall_candidates is exercised on hand-built DataFrames; run_recall_engine
against the seeded tenant (SAVEPOINT session) and, for the failure path, a
throwaway SQLite file because the engine rolls back its own transaction.
"""

import asyncio
import uuid
from datetime import date

import pandas as pd
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rebalance.domain import INFINITE_COVER_WEEKS
from rebalance.exceptions import NoSnapshotError
from rebalance.recall import (
    DEMAND_COLUMNS,
    FAMILY_COLUMNS,
    POSITION_COLUMNS,
    RecallThresholds,
    find_recall_candidates,
    is_non_fashion,
    run_recall_engine,
)

TODAY = date(2026, 10, 19)


def _positions(rows):
    return pd.DataFrame(rows, columns=POSITION_COLUMNS)


def _families(rows):
    return pd.DataFrame(rows, columns=FAMILY_COLUMNS)


def _demand(rows):
    return pd.DataFrame(rows, columns=DEMAND_COLUMNS)


FAMILIES = _families(
    [
        ("fc-dress", "FC-DRESS-01", "Đầm lụa", date(2026, 3, 1)),
        ("fc-shirt", "FC-SHIRT-02", "Áo sơ mi", None),
        ("fc-tee", "FC-TEE-03", "Áo thun", None),
        ("fc-gift", "GC-001", "Gift card 500k", None),
        ("fc-voucher", "FC-VC-09", "Voucher 100k", None),
    ]
)


class TestNonFashion:
    def test_code_prefix(self):
        assert is_non_fashion("GC-001", "anything")
        assert is_non_fashion("rfid-tag-1", "")

    def test_name_keyword(self):
        assert is_non_fashion("FC-1", "Túi giấy size L")
        assert is_non_fashion("FC-2", "Obagi serum")

    def test_fashion_item(self):
        assert not is_non_fashion("FC-DRESS-01", "Đầm lụa")
        assert not is_non_fashion(None, None)


class TestFindRecallCandidates:
    def test_never_selling_stock_is_p1(self):
        scan = find_recall_candidates(
            _positions([("store-a", "fc-dress", 7), ("store-a", "fc-dress", 5)]),
            FAMILIES,
            today=TODAY,
        )
        assert len(scan.candidates) == 1
        c = scan.candidates[0]
        assert c.on_hand == 12
        assert c.qty == 11
        assert c.priority == "P1"
        assert c.reason.startswith("DOC = ∞ ngày")
        assert "SP tạo 232 ngày trước" in c.reason
        assert c.from_weeks_cover == INFINITE_COVER_WEEKS
        assert c.logistics_cost_estimate == 11 * 5000
        assert c.net_benefit == pytest.approx(11 * 350000 * 0.1)

    def test_slow_seller_is_p2(self):
        scan = find_recall_candidates(
            _positions([("store-b", "fc-shirt", 4)]),
            FAMILIES,
            demand=_demand([("store-b", "fc-shirt", 0.045, 1)]),
        )
        c = scan.candidates[0]
        assert c.priority == "P2"
        assert c.reason.startswith("DOC = 89 ngày")
        assert c.qty == 3
        assert c.from_weeks_cover == 12.7

    def test_fast_seller_stays(self):
        scan = find_recall_candidates(
            _positions([("store-a", "fc-tee", 10)]),
            FAMILIES,
            demand=_demand([("store-a", "fc-tee", 1.5, 45)]),
        )
        assert scan.candidates == []

    def test_snapshot_velocity_beats_stale_demand(self):
        positions = _positions([("store-a", "fc-tee", 16)])
        demand = _demand([("store-a", "fc-tee", 0.1, 3)])

        without_prev = find_recall_candidates(positions, FAMILIES, demand=demand)
        assert len(without_prev.candidates) == 1

        with_prev = find_recall_candidates(
            positions,
            FAMILIES,
            demand=demand,
            prev_positions=_positions([("store-a", "fc-tee", 30)]),
            days_between=7,
        )
        assert with_prev.candidates == []

    def test_demand_summed_across_skus(self):
        scan = find_recall_candidates(
            _positions([("store-a", "fc-tee", 40)]),
            FAMILIES,
            demand=_demand([("store-a", "fc-tee", 0.3, 9), ("store-a", "fc-tee", 0.3, 9)]),
        )
        # 40 / 0.6 ≈ 67 days at 0.6/day: not overstayed, not slow
        assert scan.candidates == []

    def test_central_warehouse_is_excluded(self):
        scan = find_recall_candidates(
            _positions([("cw", "fc-dress", 100), ("store-a", "fc-dress", 3)]),
            FAMILIES,
            central_warehouse_id="cw",
        )
        assert [c.store_id for c in scan.candidates] == ["store-a"]

    def test_non_fashion_is_skipped_and_counted(self):
        scan = find_recall_candidates(
            _positions([("store-a", "fc-gift", 50), ("store-a", "fc-voucher", 20), ("store-a", "fc-dress", 4)]),
            FAMILIES,
        )
        assert scan.skipped_non_fashion == 2
        assert [c.fc_id for c in scan.candidates] == ["fc-dress"]

    def test_min_keep_and_unknown_family(self):
        scan = find_recall_candidates(
            _positions([("store-a", "fc-dress", 1), ("store-a", "fc-unknown", 40)]),
            FAMILIES,
        )
        assert scan.candidates == []

    def test_overstock_rule_with_custom_thresholds(self):
        thresholds = RecallThresholds(overstay_doc_days=1000, slow_doc_days=1000, overstock_woc_weeks=2)
        scan = find_recall_candidates(
            _positions([("store-a", "fc-tee", 20)]),
            FAMILIES,
            demand=_demand([("store-a", "fc-tee", 1.0, 30)]),
            thresholds=thresholds,
        )
        c = scan.candidates[0]
        assert c.priority == "P2"
        assert c.reason.startswith("WOC = 2.9 tuần")
        assert c.qty == 19

    def test_empty_snapshot(self):
        scan = find_recall_candidates(_positions([]), FAMILIES)
        assert scan.candidates == []
        assert scan.skipped_non_fashion == 0


@pytest.mark.asyncio
class TestRunRecallEngine:
    async def test_persists_run_and_suggestions(self, test_db, seeded_tenant):
        from db.models import RebalanceRun, RebalanceSuggestion

        customer_id = seeded_tenant["customer_id"]
        result = await run_recall_engine(test_db, customer_id, today=TODAY)

        assert result.total_suggestions == 2
        assert result.total_units == 14
        assert result.stores_analyzed == 2
        assert result.skipped_non_fashion == 1
        assert result.snapshot_velocity_days == 7

        run = (await test_db.execute(select(RebalanceRun).where(RebalanceRun.run_id == result.run_id))).scalar_one()
        assert run.status == "completed"
        assert run.run_type == "recall"
        assert run.recall_units == 14
        assert run.completed_at is not None

        rows = (
            await test_db.execute(select(RebalanceSuggestion).where(RebalanceSuggestion.run_id == result.run_id))
        ).scalars().all()
        by_store = {row.from_location_name: row for row in rows}
        assert set(by_store) == {"Store Hà Nội", "Store Sài Gòn"}
        assert by_store["Store Hà Nội"].qty == 11
        assert by_store["Store Hà Nội"].priority == "P1"
        assert by_store["Store Sài Gòn"].qty == 3
        assert all(row.to_location == seeded_tenant["warehouse"].store_id for row in rows)
        assert all(row.transfer_type == "recall" and row.status == "pending" for row in rows)

    async def test_no_central_warehouse_creates_no_suggestions(self, test_db, seeded_tenant):
        seeded_tenant["warehouse"].status = "inactive"
        await test_db.commit()

        result = await run_recall_engine(test_db, seeded_tenant["customer_id"], today=TODAY)
        assert result.total_suggestions == 0
        assert result.total_units == 0


def test_missing_snapshot_marks_run_failed(tmp_path):
    from db.models import RebalanceRun
    from db.session import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'recall.db'}", echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    customer_id = uuid.uuid4()

    async def _run():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            with pytest.raises(NoSnapshotError):
                await run_recall_engine(db, customer_id)

        async with session_factory() as db:
            runs = (
                await db.execute(select(RebalanceRun).where(RebalanceRun.customer_id == customer_id))
            ).scalars().all()
        await engine.dispose()
        return runs

    runs = asyncio.run(_run())
    assert len(runs) == 1
    assert runs[0].status == "failed"
    assert "No inventory snapshot" in runs[0].error_message
