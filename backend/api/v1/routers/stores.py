"""
Stores Router — store list and per-store stock metrics.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_customer_id, get_tenant_db
from db.models import Store
from rebalance.metrics import compute_store_metrics

router = APIRouter(prefix="/api/v1/stores", tags=["stores"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StoreResponse(BaseModel):
    store_id: UUID
    name: str
    store_code: str | None
    region: str | None
    tier: str | None
    location_type: str
    capacity: int | None
    status: str

    model_config = {"from_attributes": True}


class StoreMetricsResponse(BaseModel):
    store_id: UUID
    store_name: str
    tier: str | None
    region: str | None
    location_type: str
    on_hand: int
    available: int
    velocity: float
    weeks_of_cover: float

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[StoreResponse])
async def list_stores(
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
):
    result = await db.execute(select(Store).where(Store.customer_id == customer_id).order_by(Store.name))
    return result.scalars().all()


@router.get("/metrics", response_model=list[StoreMetricsResponse])
async def store_metrics(
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
):
    """On-hand, available, velocity and weeks of cover per active store, from the latest snapshot."""
    return await compute_store_metrics(db, customer_id)
