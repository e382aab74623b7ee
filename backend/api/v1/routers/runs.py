"""
Runs Router — engine run history and manual trigger.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_customer_id, get_engine_client, get_tenant_db
from db.models import RebalanceRun
from rebalance.engine import AllocationEngineClient, EngineMode, RunTrigger

router = APIRouter(prefix="/api/v1/rebalance/runs", tags=["runs"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class RunResponse(BaseModel):
    run_id: UUID
    run_type: str
    engine_mode: str | None
    status: str
    total_suggestions: int
    total_units: int
    push_units: int
    lateral_units: int
    recall_units: int
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class TriggerRequest(BaseModel):
    mode: EngineMode


class TriggerResponse(BaseModel):
    mode: EngineMode
    suggestions_created: int
    run_id: UUID | None
    total_units: int | None
    total_stores: int | None
    tier_changes: int | None
    message: str

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("/", response_model=list[RunResponse])
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
):
    result = await db.execute(
        select(RebalanceRun)
        .where(RebalanceRun.customer_id == customer_id)
        .order_by(RebalanceRun.started_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/latest", response_model=RunResponse | None)
async def latest_run(
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
):
    """Most recent run, or null when the tenant has none yet."""
    result = await db.execute(
        select(RebalanceRun)
        .where(RebalanceRun.customer_id == customer_id)
        .order_by(RebalanceRun.started_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_run(
    body: TriggerRequest,
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
    client: AllocationEngineClient = Depends(get_engine_client),
):
    """Run one engine pass. Engine failures surface as 502."""
    trigger = RunTrigger(db, customer_id, client=client)
    return await trigger.trigger(body.mode)
