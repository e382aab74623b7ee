"""Store Metrics — per-store stock and cover from the latest snapshot (read-only)."""

import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DemandState, InventoryPosition, Store
from rebalance.domain import INFINITE_COVER_WEEKS


@dataclass
class StoreMetrics:
    store_id: uuid.UUID
    store_name: str
    tier: str | None
    region: str | None
    location_type: str
    on_hand: int
    available: int
    velocity: float
    weeks_of_cover: float


def weeks_of_cover(on_hand: int, velocity: float) -> float:
    if velocity <= 0:
        return INFINITE_COVER_WEEKS
    return min(round(on_hand / (velocity * 7), 1), INFINITE_COVER_WEEKS)


async def compute_store_metrics(db: AsyncSession, customer_id: uuid.UUID) -> list[StoreMetrics]:
    """Aggregate on-hand, available and demand velocity per active store."""
    latest = (
        await db.execute(
            select(func.max(InventoryPosition.snapshot_date)).where(InventoryPosition.customer_id == customer_id)
        )
    ).scalar()

    stock: dict[uuid.UUID, tuple[int, int]] = {}
    if latest is not None:
        result = await db.execute(
            select(
                InventoryPosition.store_id,
                func.coalesce(func.sum(InventoryPosition.on_hand), 0),
                func.coalesce(func.sum(InventoryPosition.available), 0),
            )
            .where(InventoryPosition.customer_id == customer_id, InventoryPosition.snapshot_date == latest)
            .group_by(InventoryPosition.store_id)
        )
        stock = {row[0]: (int(row[1]), int(row[2])) for row in result.all()}

    velocity_result = await db.execute(
        select(DemandState.store_id, func.coalesce(func.sum(DemandState.avg_daily_sales), 0.0))
        .where(DemandState.customer_id == customer_id)
        .group_by(DemandState.store_id)
    )
    velocity = {row[0]: float(row[1]) for row in velocity_result.all()}

    stores = (
        await db.execute(
            select(Store).where(Store.customer_id == customer_id, Store.status == "active").order_by(Store.name)
        )
    ).scalars().all()

    metrics = []
    for store in stores:
        on_hand, available = stock.get(store.store_id, (0, 0))
        store_velocity = round(velocity.get(store.store_id, 0.0), 3)
        metrics.append(
            StoreMetrics(
                store_id=store.store_id,
                store_name=store.name,
                tier=store.tier,
                region=store.region,
                location_type=store.location_type,
                on_hand=on_hand,
                available=available,
                velocity=store_velocity,
                weeks_of_cover=weeks_of_cover(on_hand, store_velocity),
            )
        )
    return metrics
