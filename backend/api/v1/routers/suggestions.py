"""
Suggestions Router — review and decide rebalance suggestions.

The human-in-the-loop side of a rebalance run:
  1. An engine run writes suggestions → status='pending'
  2. Reviewer filters, groups (recall per source store, transfer order per
     destination) and inspects them
  3. Reviewer approves (optionally with edited quantities) or rejects

approve / reject return one result per requested id; a partially
successful batch is still a 200.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_customer_id, get_suggestion_repository, get_tenant_db
from core.config import get_settings
from db.models import Store
from rebalance.domain import StoreRef, Suggestion, SuggestionStatus, TransferType
from rebalance.repositories import SuggestionRepository
from rebalance.review import (
    StoreGroup,
    available_actions,
    classify_reason,
    engine_version,
    filter_suggestions,
    group_by_destination,
    normalize_priority,
    recall_groups,
    weeks_cover_label,
)
from rebalance.workflow import BatchResult, SuggestionWorkflow

router = APIRouter(prefix="/api/v1/rebalance/suggestions", tags=["suggestions"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class SuggestionResponse(BaseModel):
    suggestion_id: UUID
    run_id: UUID | None
    fc_id: UUID
    fc_name: str | None
    transfer_type: TransferType
    from_location: UUID | None
    from_location_name: str
    to_location: UUID | None
    to_location_name: str
    qty: int
    status: SuggestionStatus
    reason: str
    reason_category: str
    engine_version: str | None
    priority: str
    from_weeks_cover: float | None
    from_weeks_cover_label: str
    to_weeks_cover: float | None
    balanced_weeks_cover: float | None
    potential_revenue_gain: float
    logistics_cost_estimate: float
    net_benefit: float
    actions: list[str]
    created_at: datetime
    decided_at: datetime | None
    decided_by: str | None


class SuggestionSummary(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    push: int
    lateral: int
    recall: int
    pending_units: int
    approved_units: int


class StoreGroupResponse(BaseModel):
    store_id: str
    store_name: str
    tier: str
    region: str
    total_qty: int
    fc_count: int
    total_value: float
    total_revenue: float
    highest_priority: str
    reason_summary: str
    suggestion_ids: list[UUID]


class ApproveRequest(BaseModel):
    """Approve pending suggestions. edited_qty overrides the suggested qty per id."""
    ids: list[UUID] = Field(..., min_length=1)
    edited_qty: dict[UUID, int] = Field(default_factory=dict)


class RejectRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)


class ItemResultResponse(BaseModel):
    suggestion_id: UUID
    outcome: str
    status: SuggestionStatus | None
    qty: int | None
    detail: str | None


class BatchResultResponse(BaseModel):
    action: str
    succeeded: list[UUID]
    failed: list[ItemResultResponse]
    results: list[ItemResultResponse]


def _suggestion_response(s: Suggestion) -> SuggestionResponse:
    return SuggestionResponse(
        suggestion_id=s.id,
        run_id=s.run_id,
        fc_id=s.fc_id,
        fc_name=s.fc_name,
        transfer_type=s.transfer_type,
        from_location=s.from_location,
        from_location_name=s.from_location_name,
        to_location=s.to_location,
        to_location_name=s.to_location_name,
        qty=s.qty,
        status=s.status,
        reason=s.reason,
        reason_category=classify_reason(s.reason).value,
        engine_version=engine_version(s.reason),
        priority=normalize_priority(s.priority),
        from_weeks_cover=s.from_weeks_cover,
        from_weeks_cover_label=weeks_cover_label(s.from_weeks_cover),
        to_weeks_cover=s.to_weeks_cover,
        balanced_weeks_cover=s.balanced_weeks_cover,
        potential_revenue_gain=s.potential_revenue_gain,
        logistics_cost_estimate=s.logistics_cost_estimate,
        net_benefit=s.net_benefit,
        actions=list(available_actions(s)),
        created_at=s.created_at,
        decided_at=s.decided_at,
        decided_by=s.decided_by,
    )


def _group_response(group: StoreGroup) -> StoreGroupResponse:
    return StoreGroupResponse(
        store_id=group.store_id,
        store_name=group.store_name,
        tier=group.tier,
        region=group.region,
        total_qty=group.total_qty,
        fc_count=group.fc_count,
        total_value=group.total_value,
        total_revenue=group.total_revenue,
        highest_priority=group.highest_priority,
        reason_summary=group.reason_summary,
        suggestion_ids=group.suggestion_ids,
    )


def _batch_response(batch: BatchResult) -> BatchResultResponse:
    items = [
        ItemResultResponse(
            suggestion_id=r.suggestion_id,
            outcome=r.outcome.value,
            status=r.status,
            qty=r.qty,
            detail=r.detail,
        )
        for r in batch.results
    ]
    return BatchResultResponse(
        action=batch.action,
        succeeded=batch.succeeded,
        failed=[item for item in items if item.outcome != "ok"],
        results=items,
    )


async def _store_refs(db: AsyncSession, customer_id: UUID) -> list[StoreRef]:
    result = await db.execute(select(Store).where(Store.customer_id == customer_id))
    return [StoreRef(store_id=s.store_id, name=s.name, tier=s.tier, region=s.region) for s in result.scalars().all()]


def _decided_by(user: dict) -> str | None:
    return user.get("email") or user.get("sub")


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("/", response_model=list[SuggestionResponse])
async def list_suggestions(
    run_id: UUID | None = None,
    transfer_type: TransferType | None = None,
    status: SuggestionStatus | None = None,
    priority: str | None = Query(None, description="P1/P2/P3 (high/medium/low accepted)"),
    search: str | None = Query(None, description="Matches FC name or id and location names"),
    repository: SuggestionRepository = Depends(get_suggestion_repository),
):
    suggestions = await repository.list(run_id=run_id, status=status, transfer_type=transfer_type)
    suggestions = filter_suggestions(suggestions, priority=priority, search=search)
    return [_suggestion_response(s) for s in suggestions]


@router.get("/summary", response_model=SuggestionSummary)
async def suggestion_summary(
    run_id: UUID | None = None,
    repository: SuggestionRepository = Depends(get_suggestion_repository),
):
    """Counts by status and transfer type, with pending and approved units."""
    suggestions = await repository.list(run_id=run_id)
    by_status = {status: [s for s in suggestions if s.status == status] for status in SuggestionStatus}
    return SuggestionSummary(
        total=len(suggestions),
        pending=len(by_status[SuggestionStatus.PENDING]),
        approved=len(by_status[SuggestionStatus.APPROVED]),
        rejected=len(by_status[SuggestionStatus.REJECTED]),
        push=sum(1 for s in suggestions if s.transfer_type == TransferType.PUSH),
        lateral=sum(1 for s in suggestions if s.transfer_type == TransferType.LATERAL),
        recall=sum(1 for s in suggestions if s.transfer_type == TransferType.RECALL),
        pending_units=sum(s.qty for s in by_status[SuggestionStatus.PENDING]),
        approved_units=sum(s.qty for s in by_status[SuggestionStatus.APPROVED]),
    )


@router.get("/recall-groups", response_model=list[StoreGroupResponse])
async def list_recall_groups(
    run_id: UUID | None = None,
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
    repository: SuggestionRepository = Depends(get_suggestion_repository),
):
    """Pending recalls grouped by source store, highest stock value first."""
    suggestions = await repository.list(
        run_id=run_id, status=SuggestionStatus.PENDING, transfer_type=TransferType.RECALL
    )
    stores = await _store_refs(db, customer_id)
    groups = recall_groups(suggestions, stores, unit_price=get_settings().placeholder_unit_price)
    return [_group_response(g) for g in groups]


@router.get("/transfer-orders", response_model=list[StoreGroupResponse])
async def list_transfer_orders(
    run_id: UUID | None = None,
    status: SuggestionStatus = SuggestionStatus.PENDING,
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: UUID = Depends(get_customer_id),
    repository: SuggestionRepository = Depends(get_suggestion_repository),
):
    """Push and lateral moves grouped by destination, most urgent first."""
    suggestions = [
        s
        for s in await repository.list(run_id=run_id, status=status)
        if s.transfer_type != TransferType.RECALL
    ]
    stores = await _store_refs(db, customer_id)
    return [_group_response(g) for g in group_by_destination(suggestions, stores)]


@router.post("/approve", response_model=BatchResultResponse)
async def approve_suggestions(
    body: ApproveRequest,
    repository: SuggestionRepository = Depends(get_suggestion_repository),
    user: dict = Depends(get_current_user),
):
    workflow = SuggestionWorkflow(repository)
    batch = await workflow.approve(body.ids, edited_qty=body.edited_qty, decided_by=_decided_by(user))
    return _batch_response(batch)


@router.post("/reject", response_model=BatchResultResponse)
async def reject_suggestions(
    body: RejectRequest,
    repository: SuggestionRepository = Depends(get_suggestion_repository),
    user: dict = Depends(get_current_user),
):
    workflow = SuggestionWorkflow(repository)
    batch = await workflow.reject(body.ids, decided_by=_decided_by(user))
    return _batch_response(batch)
