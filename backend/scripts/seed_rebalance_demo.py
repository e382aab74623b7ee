"""
Seed Rebalance Demo — a fashion tenant with two weekly snapshots.

Creates the dev customer, a central warehouse, retail stores across three
regions, family codes (including a few non-fashion items), two inventory
snapshots a week apart, demand states, and the default constraint set.
Run a recall pass afterwards with --recall.

Run: python scripts/seed_rebalance_demo.py [--stores 6] [--families 40] [--recall]
"""

import argparse
import asyncio
import random
import uuid
from datetime import date, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import Customer, DemandState, FamilyCode, InventoryPosition, Store
from db.session import Base
from rebalance.constraints import ConstraintRegistry
from rebalance.recall import run_recall_engine
from rebalance.repositories import SqlConstraintRepository

logger = structlog.get_logger()

DEV_CUSTOMER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

REGIONS = ["North", "Central", "South"]
TIERS = ["S", "A", "A", "B", "B", "C"]
CATEGORIES = {
    "Dress": ["Đầm lụa", "Đầm suông", "Đầm maxi"],
    "Top": ["Áo sơ mi", "Áo thun", "Áo len"],
    "Bottom": ["Quần jean", "Chân váy", "Quần tây"],
}
NON_FASHION = [("GC-500", "Gift card 500k"), ("LB-01", "Nhãn dệt"), ("FC-BAG", "Túi giấy size L")]
SIZES = ["S", "M", "L"]


async def seed(stores: int, families: int, recall: bool, seed_value: int) -> None:
    rng = random.Random(seed_value)
    settings = get_settings()
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # ── Customer ─────────────────────────────────────────
        db.add(Customer(customer_id=DEV_CUSTOMER_ID, name="Demo Fashion", email="ops@demofashion.vn", plan="professional"))
        await db.flush()

        # ── Locations ────────────────────────────────────────
        warehouse = Store(customer_id=DEV_CUSTOMER_ID, name="Kho tổng", store_code="CW",
                          location_type="central_warehouse", capacity=100000)
        retail = [
            Store(
                customer_id=DEV_CUSTOMER_ID,
                name=f"Store {i + 1:02d}",
                store_code=f"ST{i + 1:02d}",
                region=REGIONS[i % len(REGIONS)],
                tier=TIERS[i % len(TIERS)],
                capacity=rng.randint(2000, 6000),
            )
            for i in range(stores)
        ]
        db.add_all([warehouse, *retail])
        await db.flush()

        # ── Family codes ─────────────────────────────────────
        fcs = []
        for i in range(families):
            category = rng.choice(list(CATEGORIES))
            fcs.append(
                FamilyCode(
                    customer_id=DEV_CUSTOMER_ID,
                    fc_code=f"FC-{category[:3].upper()}-{i:03d}",
                    fc_name=f"{rng.choice(CATEGORIES[category])} {i:03d}",
                    category=category,
                    product_created_date=date.today() - timedelta(days=rng.randint(10, 400)),
                )
            )
        fcs += [FamilyCode(customer_id=DEV_CUSTOMER_ID, fc_code=code, fc_name=name, category="Other")
                for code, name in NON_FASHION]
        db.add_all(fcs)
        await db.flush()

        # ── Snapshots & demand ───────────────────────────────
        latest = date.today() - timedelta(days=1)
        previous = latest - timedelta(days=7)
        rows = 0
        for store in [warehouse, *retail]:
            for fc in fcs:
                if store is not warehouse and rng.random() < 0.3:
                    continue
                velocity = 0.0 if store is warehouse else rng.choice([0.0, 0.02, 0.1, 0.4, 1.2])
                for size in SIZES:
                    on_hand = rng.randint(20, 80) if store is warehouse else rng.randint(0, 12)
                    sold = int(round(velocity / len(SIZES) * 7))
                    db.add_all(
                        [
                            InventoryPosition(customer_id=DEV_CUSTOMER_ID, store_id=store.store_id, fc_id=fc.fc_id,
                                              sku=f"{fc.fc_code}-{size}", snapshot_date=latest,
                                              on_hand=on_hand, available=on_hand),
                            InventoryPosition(customer_id=DEV_CUSTOMER_ID, store_id=store.store_id, fc_id=fc.fc_id,
                                              sku=f"{fc.fc_code}-{size}", snapshot_date=previous,
                                              on_hand=on_hand + sold, available=on_hand + sold),
                        ]
                    )
                    rows += 2
                if store is not warehouse:
                    db.add(
                        DemandState(customer_id=DEV_CUSTOMER_ID, store_id=store.store_id, fc_id=fc.fc_id,
                                    avg_daily_sales=velocity, total_sold=int(velocity * 30), sales_velocity=velocity)
                    )
        await db.commit()
        logger.info("seed.snapshots_created", stores=stores + 1, families=len(fcs), positions=rows)

        # ── Constraints ──────────────────────────────────────
        created = await ConstraintRegistry(SqlConstraintRepository(db, DEV_CUSTOMER_ID)).ensure_defaults()
        logger.info("seed.constraints_created", count=len(created))

        if recall:
            result = await run_recall_engine(db, DEV_CUSTOMER_ID)
            logger.info("seed.recall_run", suggestions=result.total_suggestions, units=result.total_units)

    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo tenant for rebalancing")
    parser.add_argument("--stores", type=int, default=6)
    parser.add_argument("--families", type=int, default=40)
    parser.add_argument("--recall", action="store_true", help="run a recall pass after seeding")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()
    asyncio.run(seed(args.stores, args.families, args.recall, args.seed))


if __name__ == "__main__":
    main()
