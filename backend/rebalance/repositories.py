"""
Repositories for constraints and suggestions.

The registry and the approval workflow depend only on the abstract
interfaces below. SqlConstraintRepository / SqlSuggestionRepository are the
database-backed implementations; rebalance.memory holds in-memory ones.

Every repository instance is bound to one tenant (customer_id).
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AllocationConstraint, RebalanceSuggestion, SuggestionDecision
from rebalance.domain import ConstraintItem, Decision, Suggestion, SuggestionStatus, TransferType
from rebalance.exceptions import UnknownConstraintError

logger = structlog.get_logger()


# ── Interfaces ────────────────────────────────────────────────────────────


class ConstraintRepository(ABC):
    @abstractmethod
    async def list(self) -> list[ConstraintItem]:
        """All constraint rows of the tenant, registered or not."""

    @abstractmethod
    async def get(self, constraint_id: uuid.UUID) -> ConstraintItem | None: ...

    @abstractmethod
    async def update(
        self,
        constraint_id: uuid.UUID,
        *,
        constraint_value: dict[str, Any] | None = None,
        is_active: bool | None = None,
    ) -> ConstraintItem:
        """Write only the fields that are given. Raises UnknownConstraintError for a missing id."""

    @abstractmethod
    async def create(
        self,
        *,
        constraint_key: str,
        constraint_value: dict[str, Any],
        is_active: bool = True,
        description: str | None = None,
    ) -> ConstraintItem: ...


class SuggestionRepository(ABC):
    @abstractmethod
    async def list(
        self,
        *,
        run_id: uuid.UUID | None = None,
        status: SuggestionStatus | None = None,
        transfer_type: TransferType | None = None,
    ) -> list[Suggestion]: ...

    @abstractmethod
    async def get_many(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Suggestion]:
        """Suggestions keyed by id. Ids that do not exist are simply absent."""

    @abstractmethod
    async def apply_decisions(self, decisions: list[Decision]) -> None:
        """Persist all decisions together (status, final qty, decision log)."""


# ── SQLAlchemy implementations ───────────────────────────────────────────


def _constraint_to_item(row: AllocationConstraint) -> ConstraintItem:
    return ConstraintItem(
        id=row.constraint_id,
        constraint_key=row.constraint_key,
        constraint_value=dict(row.constraint_value or {}),
        is_active=bool(row.is_active),
        description=row.description,
    )


def suggestion_to_record(row: RebalanceSuggestion) -> Suggestion:
    return Suggestion(
        id=row.suggestion_id,
        run_id=row.run_id,
        fc_id=row.fc_id,
        fc_name=row.fc_name,
        from_location=row.from_location,
        from_location_name=row.from_location_name or "",
        from_location_type=row.from_location_type,
        to_location=row.to_location,
        to_location_name=row.to_location_name or "",
        to_location_type=row.to_location_type,
        qty=row.qty,
        transfer_type=TransferType(row.transfer_type),
        status=SuggestionStatus(row.status),
        reason=row.reason or "",
        priority=row.priority,
        from_weeks_cover=row.from_weeks_cover,
        to_weeks_cover=row.to_weeks_cover,
        balanced_weeks_cover=row.balanced_weeks_cover,
        potential_revenue_gain=row.potential_revenue_gain or 0.0,
        logistics_cost_estimate=row.logistics_cost_estimate or 0.0,
        net_benefit=row.net_benefit or 0.0,
        created_at=row.created_at,
        decided_at=row.decided_at,
        decided_by=row.decided_by,
    )


class SqlConstraintRepository(ConstraintRepository):
    def __init__(self, db: AsyncSession, customer_id: uuid.UUID):
        self.db = db
        self.customer_id = customer_id

    async def _row(self, constraint_id: uuid.UUID) -> AllocationConstraint | None:
        result = await self.db.execute(
            select(AllocationConstraint).where(
                AllocationConstraint.constraint_id == constraint_id,
                AllocationConstraint.customer_id == self.customer_id,
            )
        )
        return result.scalar_one_or_none()

    async def list(self) -> list[ConstraintItem]:
        result = await self.db.execute(
            select(AllocationConstraint)
            .where(AllocationConstraint.customer_id == self.customer_id)
            .order_by(AllocationConstraint.constraint_key)
        )
        return [_constraint_to_item(row) for row in result.scalars().all()]

    async def get(self, constraint_id: uuid.UUID) -> ConstraintItem | None:
        row = await self._row(constraint_id)
        return _constraint_to_item(row) if row else None

    async def update(self, constraint_id, *, constraint_value=None, is_active=None) -> ConstraintItem:
        row = await self._row(constraint_id)
        if row is None:
            raise UnknownConstraintError(f"Constraint {constraint_id} not found")
        if constraint_value is not None:
            row.constraint_value = dict(constraint_value)
        if is_active is not None:
            row.is_active = is_active
        await self.db.commit()
        await self.db.refresh(row)
        return _constraint_to_item(row)

    async def create(self, *, constraint_key, constraint_value, is_active=True, description=None) -> ConstraintItem:
        row = AllocationConstraint(
            customer_id=self.customer_id,
            constraint_key=constraint_key,
            constraint_value=dict(constraint_value),
            is_active=is_active,
            description=description,
        )
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        return _constraint_to_item(row)


class SqlSuggestionRepository(SuggestionRepository):
    def __init__(self, db: AsyncSession, customer_id: uuid.UUID):
        self.db = db
        self.customer_id = customer_id

    async def list(self, *, run_id=None, status=None, transfer_type=None) -> list[Suggestion]:
        query = select(RebalanceSuggestion).where(RebalanceSuggestion.customer_id == self.customer_id)
        if run_id:
            query = query.where(RebalanceSuggestion.run_id == run_id)
        if status:
            query = query.where(RebalanceSuggestion.status == SuggestionStatus(status).value)
        if transfer_type:
            query = query.where(RebalanceSuggestion.transfer_type == TransferType(transfer_type).value)
        query = query.order_by(RebalanceSuggestion.created_at, RebalanceSuggestion.from_location_name)
        result = await self.db.execute(query)
        return [suggestion_to_record(row) for row in result.scalars().all()]

    async def _rows(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, RebalanceSuggestion]:
        id_list = list(ids)
        if not id_list:
            return {}
        result = await self.db.execute(
            select(RebalanceSuggestion).where(
                RebalanceSuggestion.customer_id == self.customer_id,
                RebalanceSuggestion.suggestion_id.in_(id_list),
            )
        )
        return {row.suggestion_id: row for row in result.scalars().all()}

    async def get_many(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Suggestion]:
        return {sid: suggestion_to_record(row) for sid, row in (await self._rows(ids)).items()}

    async def apply_decisions(self, decisions: list[Decision]) -> None:
        if not decisions:
            return
        rows = await self._rows(d.suggestion_id for d in decisions)
        for decision in decisions:
            row = rows[decision.suggestion_id]
            row.status = decision.status.value
            row.qty = decision.final_qty if decision.status == SuggestionStatus.APPROVED else row.qty
            row.decided_at = decision.decided_at
            row.decided_by = decision.decided_by
            self.db.add(
                SuggestionDecision(
                    customer_id=self.customer_id,
                    suggestion_id=decision.suggestion_id,
                    decision_type=decision.decision_type,
                    original_qty=decision.original_qty,
                    final_qty=decision.final_qty,
                    decided_by=decision.decided_by,
                    decided_at=decision.decided_at,
                )
            )
        await self.db.commit()
        logger.debug("suggestions.decisions_persisted", customer_id=str(self.customer_id), count=len(decisions))
