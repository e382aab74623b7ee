"""
In-memory repositories.

Drop-in replacements for the SQL repositories, used by unit tests and
local demos. State lives on the instance; nothing is shared between them.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import replace

from rebalance.domain import ConstraintItem, Decision, Suggestion, SuggestionStatus, TransferType
from rebalance.exceptions import UnknownConstraintError
from rebalance.repositories import ConstraintRepository, SuggestionRepository


class InMemoryConstraintRepository(ConstraintRepository):
    def __init__(self, items: Iterable[ConstraintItem] = ()):
        self.items: dict[uuid.UUID, ConstraintItem] = {item.id: replace(item) for item in items}

    async def list(self) -> list[ConstraintItem]:
        return sorted((replace(i) for i in self.items.values()), key=lambda i: i.constraint_key)

    async def get(self, constraint_id):
        item = self.items.get(constraint_id)
        return replace(item) if item else None

    async def update(self, constraint_id, *, constraint_value=None, is_active=None) -> ConstraintItem:
        item = self.items.get(constraint_id)
        if item is None:
            raise UnknownConstraintError(f"Constraint {constraint_id} not found")
        if constraint_value is not None:
            item.constraint_value = dict(constraint_value)
        if is_active is not None:
            item.is_active = is_active
        return replace(item)

    async def create(self, *, constraint_key, constraint_value, is_active=True, description=None) -> ConstraintItem:
        item = ConstraintItem(
            id=uuid.uuid4(),
            constraint_key=constraint_key,
            constraint_value=dict(constraint_value),
            is_active=is_active,
            description=description,
        )
        self.items[item.id] = item
        return replace(item)


class InMemorySuggestionRepository(SuggestionRepository):
    def __init__(self, suggestions: Iterable[Suggestion] = ()):
        self.suggestions: dict[uuid.UUID, Suggestion] = {s.id: replace(s) for s in suggestions}
        self.decision_log: list[Decision] = []

    async def list(self, *, run_id=None, status=None, transfer_type=None) -> list[Suggestion]:
        result = []
        for s in self.suggestions.values():
            if run_id and s.run_id != run_id:
                continue
            if status and s.status != SuggestionStatus(status):
                continue
            if transfer_type and s.transfer_type != TransferType(transfer_type):
                continue
            result.append(replace(s))
        return result

    async def get_many(self, ids) -> dict[uuid.UUID, Suggestion]:
        return {sid: replace(self.suggestions[sid]) for sid in ids if sid in self.suggestions}

    async def apply_decisions(self, decisions: list[Decision]) -> None:
        for decision in decisions:
            s = self.suggestions[decision.suggestion_id]
            s.status = decision.status
            if decision.status == SuggestionStatus.APPROVED:
                s.qty = decision.final_qty
            s.decided_at = decision.decided_at
            s.decided_by = decision.decided_by
            self.decision_log.append(decision)
