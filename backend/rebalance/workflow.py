"""
Approval Workflow — bulk approve / reject of rebalance suggestions.

State machine per suggestion:

    pending ──approve──▶ approved   (terminal)
       └─────reject───▶ rejected   (terminal)

Approval may carry an edited quantity per id; the override replaces the
suggested qty. Every call returns one result per requested id so callers
can reconcile partial application: ids that are missing, already decided,
or carry an invalid quantity are reported and skipped, and the rest are
persisted together.

There is no version column: two reviewers deciding overlapping sets both
act on the pending state they last read (last write wins).
"""

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

import structlog

from rebalance.domain import Decision, SuggestionStatus
from rebalance.repositories import SuggestionRepository

logger = structlog.get_logger()


class DecisionOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_PENDING = "not_pending"
    INVALID_QTY = "invalid_qty"


@dataclass
class ItemResult:
    suggestion_id: uuid.UUID
    outcome: DecisionOutcome
    status: SuggestionStatus | None = None
    qty: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == DecisionOutcome.OK


@dataclass
class BatchResult:
    action: str
    results: list[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[uuid.UUID]:
        return [r.suggestion_id for r in self.results if r.ok]

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if not r.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed


def _unique(ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    seen: set[uuid.UUID] = set()
    ordered = []
    for sid in ids:
        if sid not in seen:
            seen.add(sid)
            ordered.append(sid)
    return ordered


def _valid_qty(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class SuggestionWorkflow:
    def __init__(self, repository: SuggestionRepository):
        self.repository = repository

    async def approve(
        self,
        ids: Iterable[uuid.UUID],
        edited_qty: Mapping[uuid.UUID, int] | None = None,
        decided_by: str | None = None,
    ) -> BatchResult:
        """Approve pending suggestions, applying any quantity overrides."""
        edited_qty = edited_qty or {}
        return await self._decide("approve", SuggestionStatus.APPROVED, ids, edited_qty, decided_by)

    async def reject(self, ids: Iterable[uuid.UUID], decided_by: str | None = None) -> BatchResult:
        return await self._decide("reject", SuggestionStatus.REJECTED, ids, {}, decided_by)

    async def _decide(
        self,
        action: str,
        target: SuggestionStatus,
        ids: Iterable[uuid.UUID],
        edited_qty: Mapping[uuid.UUID, int],
        decided_by: str | None,
    ) -> BatchResult:
        requested = _unique(ids)
        current = await self.repository.get_many(requested)
        batch = BatchResult(action=action)
        decisions: list[Decision] = []

        for sid in requested:
            suggestion = current.get(sid)
            if suggestion is None:
                batch.results.append(ItemResult(sid, DecisionOutcome.NOT_FOUND, detail="Suggestion not found"))
                continue
            if not suggestion.is_pending:
                batch.results.append(
                    ItemResult(
                        sid,
                        DecisionOutcome.NOT_PENDING,
                        status=suggestion.status,
                        qty=suggestion.qty,
                        detail=f"Cannot {action} a suggestion in '{suggestion.status.value}' status",
                    )
                )
                continue

            if target == SuggestionStatus.APPROVED:
                final_qty = edited_qty.get(sid, suggestion.qty)
                if not _valid_qty(final_qty):
                    batch.results.append(
                        ItemResult(
                            sid,
                            DecisionOutcome.INVALID_QTY,
                            status=suggestion.status,
                            qty=suggestion.qty,
                            detail=f"Quantity must be a non-negative integer, got {final_qty!r}",
                        )
                    )
                    continue
            else:
                final_qty = 0

            decisions.append(
                Decision(
                    suggestion_id=sid,
                    status=target,
                    original_qty=suggestion.qty,
                    final_qty=final_qty,
                    decided_by=decided_by,
                )
            )
            batch.results.append(
                ItemResult(
                    sid,
                    DecisionOutcome.OK,
                    status=target,
                    qty=final_qty if target == SuggestionStatus.APPROVED else suggestion.qty,
                )
            )

        await self.repository.apply_decisions(decisions)

        logger.info(
            f"workflow.{action}",
            requested=len(requested),
            applied=len(decisions),
            failed=len(batch.failed),
            edited=sum(1 for d in decisions if d.decision_type == "edited"),
        )
        return batch
