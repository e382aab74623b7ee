"""
Recall Engine — return slow stock from stores to the central warehouse.

Runs against the tenant's two most recent inventory snapshots:

1. Sum on-hand per (store, family code) in the latest snapshot
2. Velocity = max(snapshot velocity, demand avg_daily_sales), where
   snapshot velocity = max(0, previous on-hand − current on-hand) / days between
3. DOC = on_hand / velocity and WOC = on_hand / (velocity × 7),
   both 999 when nothing sold
4. Recall when, in order:
     DOC > 90 and on_hand ≥ 3                    → P1, overstayed
     DOC > 60 and velocity < 0.05 and on_hand ≥ 3 → P2, slow seller
     WOC > 16 and on_hand ≥ 5                    → P2, overstock
5. Recall everything above the minimum keep (1 unit)

The central warehouse itself, unknown family codes, and non-fashion items
(services, labels, packaging, cosmetics, vouchers) are never recalled.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

import numpy as np
import pandas as pd
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import (
    DemandState,
    FamilyCode,
    InventoryPosition,
    RebalanceRun,
    RebalanceSuggestion,
    Store,
)
from rebalance.domain import INFINITE_COVER_WEEKS, LocationType, SuggestionStatus, TransferType
from rebalance.exceptions import NoSnapshotError

logger = structlog.get_logger()

INFINITE_DOC_DAYS = 999.0

NON_FASHION_PREFIXES = (
    "DTR", "333", "dichvu", "GC", "LB", "RFID", "CLI", "SER", "TXN", "OBG", "BVSE", "VC0", "VCOLV",
)

NON_FASHION_KEYWORDS = (
    "nhãn dệt", "nhãn det", "nhan det", "tags rfid", "tag rfid",
    "dịch vụ", "dich vu", "điều trị", "dieu tri",
    "voucher", "gift card", "thank you card", "card valentine",
    "móc đầm", "móc kẹp", "móc nhựa", "moc dam", "moc kep",
    "giấy pelure", "giay pelure", "túi biodegrade", "tui biodegrade",
    "túi giấy", "tui giay", "serum", "cream", "obagi",
    "quà tặng không bán", "gift olv",
)


def is_non_fashion(fc_code: str | None, fc_name: str | None) -> bool:
    code_upper = (fc_code or "").upper()
    if any(code_upper.startswith(prefix.upper()) for prefix in NON_FASHION_PREFIXES):
        return True
    name_lower = (fc_name or "").lower()
    return any(keyword in name_lower for keyword in NON_FASHION_KEYWORDS)


@dataclass(frozen=True)
class RecallThresholds:
    min_keep: int = 1
    overstay_doc_days: float = 90.0
    slow_doc_days: float = 60.0
    slow_velocity: float = 0.05
    overstock_woc_weeks: float = 16.0
    min_units_doc: int = 3
    min_units_woc: int = 5
    logistics_cost_per_unit: float = 5000.0
    benefit_rate: float = 0.1
    unit_price: float = 350000.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecallThresholds":
        return cls(
            min_keep=settings.recall_min_keep_units,
            overstay_doc_days=settings.recall_overstay_doc_days,
            slow_doc_days=settings.recall_slow_doc_days,
            slow_velocity=settings.recall_slow_velocity_per_day,
            overstock_woc_weeks=settings.recall_overstock_woc_weeks,
            min_units_doc=settings.recall_min_units_doc,
            min_units_woc=settings.recall_min_units_woc,
            logistics_cost_per_unit=settings.recall_logistics_cost_per_unit,
            benefit_rate=settings.recall_benefit_rate,
            unit_price=settings.placeholder_unit_price,
        )


@dataclass
class RecallCandidate:
    store_id: uuid.UUID
    fc_id: uuid.UUID
    fc_name: str
    on_hand: int
    velocity: float
    doc: float
    woc: float
    qty: int
    priority: str
    reason: str
    from_weeks_cover: float
    logistics_cost_estimate: float
    net_benefit: float


@dataclass
class RecallScan:
    candidates: list[RecallCandidate] = field(default_factory=list)
    skipped_non_fashion: int = 0


@dataclass
class RecallRunResult:
    run_id: uuid.UUID
    total_suggestions: int
    total_units: int
    stores_analyzed: int
    skipped_non_fashion: int
    snapshot_velocity_days: int


# ── Pure scan ─────────────────────────────────────────────────────────────

POSITION_COLUMNS = ["store_id", "fc_id", "on_hand"]
FAMILY_COLUMNS = ["fc_id", "fc_code", "fc_name", "product_created_date"]
DEMAND_COLUMNS = ["store_id", "fc_id", "avg_daily_sales", "total_sold"]


def _cover_label(value: float, fmt: str) -> str:
    return "∞" if value >= INFINITE_DOC_DAYS else format(value, fmt)


def _classify(row, thresholds: RecallThresholds, age_days: int | None) -> tuple[str, str] | None:
    """(priority, reason) for a recall, or None when the row stays in store."""
    age = f", SP tạo {age_days} ngày trước" if age_days is not None else ""
    sold = f"đã bán {int(row.total_sold)} (30d){age}"
    if row.doc > thresholds.overstay_doc_days and row.on_hand >= thresholds.min_units_doc:
        return "P1", (
            f"DOC = {_cover_label(row.doc, '.0f')} ngày, velocity {row.velocity:.3f}/ngày, {sold}. Hàng tồn quá lâu"
        )
    if (
        row.doc > thresholds.slow_doc_days
        and row.velocity < thresholds.slow_velocity
        and row.on_hand >= thresholds.min_units_doc
    ):
        return "P2", f"DOC = {row.doc:.0f} ngày, velocity = {row.velocity:.3f}/ngày, {sold}. Hàng bán chậm"
    if row.woc > thresholds.overstock_woc_weeks and row.on_hand >= thresholds.min_units_woc:
        return "P2", (
            f"WOC = {_cover_label(row.woc, '.1f')} tuần, velocity {row.velocity:.3f}/ngày, {sold}. Tồn kho vượt mức"
        )
    return None


def find_recall_candidates(
    positions: pd.DataFrame,
    families: pd.DataFrame,
    demand: pd.DataFrame | None = None,
    prev_positions: pd.DataFrame | None = None,
    days_between: int = 1,
    central_warehouse_id: uuid.UUID | None = None,
    thresholds: RecallThresholds | None = None,
    today: date | None = None,
) -> RecallScan:
    """
    Identify (store, family code) pairs whose stock should go back to the warehouse.

    Args:
        positions: Latest snapshot rows with store_id, fc_id, on_hand (one row per SKU)
        families: Family codes with fc_id, fc_code, fc_name, product_created_date
        demand: Demand rows with store_id, fc_id, avg_daily_sales, total_sold
        prev_positions: Previous snapshot rows (same shape as positions), or None
        days_between: Days between the two snapshots (>= 1)
        central_warehouse_id: Store id of the central warehouse, excluded from recall
    """
    thresholds = thresholds or RecallThresholds()
    today = today or date.today()
    days_between = max(1, int(days_between))
    scan = RecallScan()

    if positions.empty:
        return scan

    current = positions.groupby(["store_id", "fc_id"], as_index=False, sort=False)["on_hand"].sum()
    if central_warehouse_id is not None:
        current = current[current["store_id"] != central_warehouse_id]

    fam = families.drop_duplicates("fc_id").set_index("fc_id")
    current = current[current["fc_id"].isin(fam.index)]
    if current.empty:
        return scan

    non_fashion = fam.apply(lambda f: is_non_fashion(f["fc_code"], f["fc_name"]), axis=1)
    excluded = current["fc_id"].map(non_fashion).astype(bool)
    scan.skipped_non_fashion = int(excluded.sum())
    current = current[~excluded]
    current = current[current["on_hand"] > thresholds.min_keep].copy()
    if current.empty:
        return scan

    if prev_positions is not None and not prev_positions.empty:
        prev = (
            prev_positions.groupby(["store_id", "fc_id"], as_index=False, sort=False)["on_hand"]
            .sum()
            .rename(columns={"on_hand": "prev_on_hand"})
        )
        current = current.merge(prev, on=["store_id", "fc_id"], how="left")
        current["prev_on_hand"] = current["prev_on_hand"].fillna(0)
        sold = (current["prev_on_hand"] - current["on_hand"]).clip(lower=0)
        current["snapshot_velocity"] = np.where(current["prev_on_hand"] > 0, sold / days_between, 0.0)
    else:
        current["snapshot_velocity"] = 0.0

    if demand is not None and not demand.empty:
        dem = demand.groupby(["store_id", "fc_id"], as_index=False, sort=False)[["avg_daily_sales", "total_sold"]].sum()
        current = current.merge(dem, on=["store_id", "fc_id"], how="left")
    else:
        current["avg_daily_sales"] = 0.0
        current["total_sold"] = 0
    current["avg_daily_sales"] = current["avg_daily_sales"].fillna(0.0)
    current["total_sold"] = current["total_sold"].fillna(0)

    current["velocity"] = np.maximum(current["snapshot_velocity"], current["avg_daily_sales"])
    selling = current["velocity"] > 0
    safe_velocity = current["velocity"].where(selling, 1.0)
    current["doc"] = np.where(selling, current["on_hand"] / safe_velocity, INFINITE_DOC_DAYS)
    current["woc"] = np.where(selling, current["on_hand"] / (safe_velocity * 7), INFINITE_COVER_WEEKS)

    for row in current.itertuples(index=False):
        info = fam.loc[row.fc_id]
        created = info["product_created_date"]
        age_days = (today - created).days if isinstance(created, date) else None

        decision = _classify(row, thresholds, age_days)
        if decision is None:
            continue
        priority, reason = decision

        qty = max(1, int(row.on_hand) - thresholds.min_keep)
        scan.candidates.append(
            RecallCandidate(
                store_id=row.store_id,
                fc_id=row.fc_id,
                fc_name=info["fc_name"] or info["fc_code"] or str(row.fc_id),
                on_hand=int(row.on_hand),
                velocity=float(row.velocity),
                doc=float(row.doc),
                woc=float(row.woc),
                qty=qty,
                priority=priority,
                reason=reason,
                from_weeks_cover=INFINITE_COVER_WEEKS if row.woc >= INFINITE_COVER_WEEKS else round(float(row.woc), 1),
                logistics_cost_estimate=qty * thresholds.logistics_cost_per_unit,
                net_benefit=qty * thresholds.unit_price * thresholds.benefit_rate,
            )
        )

    return scan


# ── Persisted run ────────────────────────────────────────────────────────


async def _positions_frame(db: AsyncSession, customer_id: uuid.UUID, snapshot_date: date) -> pd.DataFrame:
    result = await db.execute(
        select(InventoryPosition.store_id, InventoryPosition.fc_id, InventoryPosition.on_hand).where(
            InventoryPosition.customer_id == customer_id,
            InventoryPosition.snapshot_date == snapshot_date,
            InventoryPosition.on_hand > 0,
        )
    )
    return pd.DataFrame([tuple(r) for r in result.all()], columns=POSITION_COLUMNS)


async def run_recall_engine(
    db: AsyncSession,
    customer_id: uuid.UUID,
    thresholds: RecallThresholds | None = None,
    today: date | None = None,
) -> RecallRunResult:
    """Scan the tenant's latest snapshot and persist a recall run with its suggestions."""
    settings = get_settings()
    thresholds = thresholds or RecallThresholds.from_settings(settings)

    run = RebalanceRun(customer_id=customer_id, run_type="recall", status="running")
    db.add(run)
    await db.flush()
    run_id = run.run_id
    logger.info("recall.started", customer_id=str(customer_id), run_id=str(run_id))

    try:
        stores = (
            await db.execute(select(Store).where(Store.customer_id == customer_id, Store.status == "active"))
        ).scalars().all()
        warehouse = next((s for s in stores if s.location_type == LocationType.CENTRAL_WAREHOUSE.value), None)
        retail_stores = [s for s in stores if s.location_type != LocationType.CENTRAL_WAREHOUSE.value]
        store_names = {s.store_id: s.name or s.store_code or str(s.store_id) for s in stores}

        snapshot_dates = (
            await db.execute(
                select(InventoryPosition.snapshot_date)
                .where(InventoryPosition.customer_id == customer_id)
                .distinct()
                .order_by(InventoryPosition.snapshot_date.desc())
                .limit(2)
            )
        ).scalars().all()
        if not snapshot_dates:
            raise NoSnapshotError("No inventory snapshot found")
        latest = snapshot_dates[0]
        previous = snapshot_dates[1] if len(snapshot_dates) > 1 else None
        days_between = max(1, (latest - previous).days) if previous else 1

        positions = await _positions_frame(db, customer_id, latest)
        prev_positions = await _positions_frame(db, customer_id, previous) if previous else None

        fam_rows = (
            await db.execute(
                select(FamilyCode.fc_id, FamilyCode.fc_code, FamilyCode.fc_name, FamilyCode.product_created_date).where(
                    FamilyCode.customer_id == customer_id
                )
            )
        ).all()
        families = pd.DataFrame([tuple(r) for r in fam_rows], columns=FAMILY_COLUMNS)

        demand_rows = (
            await db.execute(
                select(DemandState.store_id, DemandState.fc_id, DemandState.avg_daily_sales, DemandState.total_sold).where(
                    DemandState.customer_id == customer_id
                )
            )
        ).all()
        demand = pd.DataFrame([tuple(r) for r in demand_rows], columns=DEMAND_COLUMNS)

        scan = find_recall_candidates(
            positions,
            families,
            demand=demand,
            prev_positions=prev_positions,
            days_between=days_between,
            central_warehouse_id=warehouse.store_id if warehouse else None,
            thresholds=thresholds,
            today=today,
        )
        if warehouse is None and scan.candidates:
            logger.warning("recall.no_central_warehouse", customer_id=str(customer_id))
        candidates = scan.candidates if warehouse else []

        batch_size = max(1, settings.recall_insert_batch_size)
        for start in range(0, len(candidates), batch_size):
            db.add_all(
                [
                    RebalanceSuggestion(
                        customer_id=customer_id,
                        run_id=run_id,
                        transfer_type=TransferType.RECALL.value,
                        fc_id=c.fc_id,
                        fc_name=c.fc_name,
                        from_location=c.store_id,
                        from_location_name=store_names.get(c.store_id, str(c.store_id)),
                        from_location_type=LocationType.RETAIL.value,
                        to_location=warehouse.store_id,
                        to_location_name=warehouse.name or "Kho tổng",
                        to_location_type=LocationType.CENTRAL_WAREHOUSE.value,
                        qty=c.qty,
                        reason=c.reason,
                        priority=c.priority,
                        from_weeks_cover=c.from_weeks_cover,
                        to_weeks_cover=0.0,
                        balanced_weeks_cover=0.0,
                        potential_revenue_gain=0.0,
                        logistics_cost_estimate=c.logistics_cost_estimate,
                        net_benefit=c.net_benefit,
                        status=SuggestionStatus.PENDING.value,
                    )
                    for c in candidates[start : start + batch_size]
                ]
            )
            await db.flush()

        total_units = sum(c.qty for c in candidates)
        run.status = "completed"
        run.total_suggestions = len(candidates)
        run.total_units = total_units
        run.recall_units = total_units
        run.completed_at = datetime.utcnow()
        await db.commit()
    except Exception as exc:
        await db.rollback()
        await _mark_failed(db, customer_id, run_id, str(exc))
        logger.error("recall.failed", customer_id=str(customer_id), error=str(exc))
        raise

    result = RecallRunResult(
        run_id=run_id,
        total_suggestions=len(candidates),
        total_units=total_units,
        stores_analyzed=len(retail_stores),
        skipped_non_fashion=scan.skipped_non_fashion,
        snapshot_velocity_days=days_between,
    )
    logger.info(
        "recall.completed",
        customer_id=str(customer_id),
        run_id=str(run_id),
        suggestions=result.total_suggestions,
        units=result.total_units,
        skipped_non_fashion=result.skipped_non_fashion,
    )
    return result


async def _mark_failed(db: AsyncSession, customer_id: uuid.UUID, run_id: uuid.UUID, message: str) -> None:
    """Record a failed run after the scan transaction was rolled back."""
    db.add(
        RebalanceRun(
            run_id=run_id,
            customer_id=customer_id,
            run_type="recall",
            status="failed",
            error_message=message[:2000],
            completed_at=datetime.utcnow(),
        )
    )
    await db.commit()
