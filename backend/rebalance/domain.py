"""
Rebalancing domain records.

Plain dataclasses shared by the repositories, the workflow, and the pure
review helpers, so none of them depend on ORM rows.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Weeks-of-cover at or above this value means "no sales" (infinite cover).
INFINITE_COVER_WEEKS = 999.0


class TransferType(str, Enum):
    PUSH = "push"  # central warehouse -> store
    LATERAL = "lateral"  # store -> store
    RECALL = "recall"  # store -> central warehouse


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LocationType(str, Enum):
    RETAIL = "retail"
    CENTRAL_WAREHOUSE = "central_warehouse"


@dataclass
class ConstraintItem:
    """One stored constraint row. constraint_value is untyped until resolved."""

    id: uuid.UUID
    constraint_key: str
    constraint_value: dict[str, Any]
    is_active: bool
    description: str | None = None


@dataclass
class Suggestion:
    """One proposed inventory movement produced by an engine run."""

    id: uuid.UUID
    fc_id: uuid.UUID
    from_location: uuid.UUID | None
    to_location: uuid.UUID | None
    qty: int
    transfer_type: TransferType
    status: SuggestionStatus = SuggestionStatus.PENDING
    reason: str = ""
    from_weeks_cover: float | None = None
    run_id: uuid.UUID | None = None
    fc_name: str | None = None
    from_location_name: str = ""
    from_location_type: str | None = None
    to_location_name: str = ""
    to_location_type: str | None = None
    priority: str = "P2"
    to_weeks_cover: float | None = None
    balanced_weeks_cover: float | None = None
    potential_revenue_gain: float = 0.0
    logistics_cost_estimate: float = 0.0
    net_benefit: float = 0.0
    created_at: datetime = field(default_factory=datetime.utcnow)
    decided_at: datetime | None = None
    decided_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING


@dataclass
class Decision:
    """A status transition to persist for one suggestion."""

    suggestion_id: uuid.UUID
    status: SuggestionStatus
    original_qty: int
    final_qty: int
    decided_by: str | None = None
    decided_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def decision_type(self) -> str:
        if self.status == SuggestionStatus.REJECTED:
            return "rejected"
        return "approved" if self.final_qty == self.original_qty else "edited"


@dataclass
class StoreRef:
    """Store attributes the review helpers need for labelling groups."""

    store_id: uuid.UUID
    name: str
    tier: str | None = None
    region: str | None = None
