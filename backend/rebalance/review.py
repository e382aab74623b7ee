"""
Suggestion Review — pure grouping, filtering and summarisation helpers.

Nothing here touches the database. The helpers take the suggestion list a
reviewer is looking at and derive:

  - reason categories (keyword classification with an "Other" fallback)
  - per-source-store recall groups with quantity / value totals
  - per-destination daily transfer orders with their highest priority
    and their own push/lateral reason labels
  - filtered views for the review board

Usage:
    from rebalance.review import recall_groups, summarize_reasons

    groups = recall_groups(suggestions, stores, unit_price=350_000)
    groups[0].reason_summary
    # → "2 DOC cao · 1 Velocity thấp"
"""

import re
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from rebalance.domain import INFINITE_COVER_WEEKS, StoreRef, Suggestion, SuggestionStatus, TransferType

UNKNOWN_LOCATION = "unknown"


# ── Reason classification ────────────────────────────────────────────────


class ReasonCategory(str, Enum):
    DOC_HIGH = "DOC cao"
    LOW_VELOCITY = "Velocity thấp"
    END_OF_SEASON = "Hết mùa"
    WOC_HIGH = "WOC cao"
    DEAD_STOCK = "Dead stock"
    OTHER = "Khác"


# First match wins.
_REASON_PATTERNS: tuple[tuple[ReasonCategory, re.Pattern], ...] = (
    (ReasonCategory.DOC_HIGH, re.compile(r"DOC|days.?of.?cover|ngày tồn", re.IGNORECASE)),
    (ReasonCategory.LOW_VELOCITY, re.compile(r"velocity|tốc độ bán", re.IGNORECASE)),
    (ReasonCategory.END_OF_SEASON, re.compile(r"season|mùa|hết mùa", re.IGNORECASE)),
    (ReasonCategory.WOC_HIGH, re.compile(r"WOC|weeks.?cover|tuần tồn", re.IGNORECASE)),
    (ReasonCategory.DEAD_STOCK, re.compile(r"dead.?stock|hàng chết", re.IGNORECASE)),
)

class TransferReason(str, Enum):
    STOCKOUT_RISK = "Stockout risk"
    HIGH_VELOCITY = "Velocity cao"
    LOW_WEEKS_COVER = "Weeks cover thấp"
    COLLECTION_BASELINE = "Phủ nền BST"
    DEMAND_TOPUP = "Bổ sung theo nhu cầu"
    BALANCING = "Cân bằng giữa kho"
    OTHER = "Khác"


# Push/lateral reasons read the other way round: velocity here means fast sellers.
_TRANSFER_PATTERNS: tuple[tuple[TransferReason, re.Pattern], ...] = (
    (TransferReason.STOCKOUT_RISK, re.compile(r"stockout|hết hàng", re.IGNORECASE)),
    (TransferReason.HIGH_VELOCITY, re.compile(r"velocity|tốc độ bán", re.IGNORECASE)),
    (TransferReason.LOW_WEEKS_COVER, re.compile(r"weeks.?cover|tuần tồn", re.IGNORECASE)),
    (TransferReason.COLLECTION_BASELINE, re.compile(r"V1|phủ nền|BST", re.IGNORECASE)),
    (TransferReason.DEMAND_TOPUP, re.compile(r"V2|nhu cầu", re.IGNORECASE)),
    (TransferReason.BALANCING, re.compile(r"lateral|cân bằng", re.IGNORECASE)),
)

_ENGINE_VERSION = re.compile(r"^\s*(V[12])\s*:")


def classify_reason(reason: str | None) -> ReasonCategory:
    text = reason or ""
    for category, pattern in _REASON_PATTERNS:
        if pattern.search(text):
            return category
    return ReasonCategory.OTHER


def classify_transfer_reason(reason: str | None) -> TransferReason:
    text = reason or ""
    for category, pattern in _TRANSFER_PATTERNS:
        if pattern.search(text):
            return category
    return TransferReason.OTHER


def summarize_reasons(
    suggestions: list[Suggestion],
    top: int = 3,
    classify: Callable[[str | None], Enum] = classify_reason,
) -> str:
    """'<count> <label>' for the most frequent categories, joined by ' · '."""
    counts = Counter(classify(s.reason) for s in suggestions)
    # most_common keeps first-seen order among equal counts
    return " · ".join(f"{n} {category.value}" for category, n in counts.most_common(top))


def engine_version(reason: str | None) -> str | None:
    """Engine pass that produced a suggestion, from its 'V1:' / 'V2:' reason prefix."""
    match = _ENGINE_VERSION.match(reason or "")
    return match.group(1) if match else None


# ── Display helpers ──────────────────────────────────────────────────────


PRIORITY_RANK = {"P1": 1, "high": 1, "P2": 2, "medium": 2, "P3": 3, "low": 3}
PRIORITY_LABEL = {"P1": "P1", "high": "P1", "P2": "P2", "medium": "P2", "P3": "P3", "low": "P3"}


def normalize_priority(priority: str | None) -> str:
    return PRIORITY_LABEL.get(priority or "", "P3")


def priority_rank(priority: str | None) -> int:
    return PRIORITY_RANK.get(priority or "", 3)


def weeks_cover_label(weeks: float | None) -> str:
    value = weeks or 0.0
    if value >= INFINITE_COVER_WEEKS:
        return "∞"
    return f"{value:.1f}w"


def available_actions(suggestion: Suggestion) -> tuple[str, ...]:
    """Transitions a reviewer may take. Approved and rejected are terminal."""
    if suggestion.status == SuggestionStatus.PENDING:
        return ("approve", "reject")
    return ()


# ── Grouping ─────────────────────────────────────────────────────────────


@dataclass
class StoreGroup:
    store_id: str
    store_name: str
    tier: str = ""
    region: str = ""
    total_qty: int = 0
    fc_count: int = 0
    total_value: float = 0.0
    total_revenue: float = 0.0
    highest_priority: str = "P3"
    reason_summary: str = ""
    suggestions: list[Suggestion] = field(default_factory=list)

    @property
    def suggestion_ids(self) -> list[uuid.UUID]:
        return [s.id for s in self.suggestions]


def _location_key(location: uuid.UUID | None) -> str:
    return str(location) if location else UNKNOWN_LOCATION


def _partition(suggestions: list[Suggestion], attr: str) -> dict[str, list[Suggestion]]:
    groups: dict[str, list[Suggestion]] = {}
    for s in suggestions:
        groups.setdefault(_location_key(getattr(s, attr)), []).append(s)
    return groups


def _build_group(
    key: str,
    items: list[Suggestion],
    stores: dict[str, StoreRef],
    fallback_name: str,
    unit_price: float,
    classify: Callable[[str | None], Enum] = classify_reason,
) -> StoreGroup:
    meta = stores.get(key)
    highest = min((s.priority for s in items), key=priority_rank, default="P3")
    return StoreGroup(
        store_id=key,
        store_name=fallback_name or (meta.name if meta else "") or (meta.region if meta else "") or key,
        tier=(meta.tier or "") if meta else "",
        region=(meta.region or "") if meta else "",
        total_qty=sum(s.qty for s in items),
        fc_count=len({s.fc_id for s in items}),
        total_value=sum(s.qty * unit_price for s in items),
        total_revenue=sum(s.potential_revenue_gain for s in items),
        highest_priority=normalize_priority(highest),
        reason_summary=summarize_reasons(items, classify=classify),
        suggestions=items,
    )


def _store_index(stores: list[StoreRef] | dict[str, StoreRef] | None) -> dict[str, StoreRef]:
    if not stores:
        return {}
    if isinstance(stores, dict):
        return stores
    return {str(s.store_id): s for s in stores}


def group_by_source(
    suggestions: list[Suggestion],
    stores: list[StoreRef] | dict[str, StoreRef] | None = None,
    unit_price: float = 0.0,
) -> list[StoreGroup]:
    """Partition by from_location, sorted by total value (then quantity) descending."""
    index = _store_index(stores)
    groups = [
        _build_group(key, items, index, items[0].from_location_name, unit_price)
        for key, items in _partition(suggestions, "from_location").items()
    ]
    return sorted(groups, key=lambda g: (g.total_value, g.total_qty), reverse=True)


def recall_groups(
    suggestions: list[Suggestion],
    stores: list[StoreRef] | dict[str, StoreRef] | None = None,
    unit_price: float = 0.0,
) -> list[StoreGroup]:
    """Pending recalls grouped by the store they would leave."""
    pending_recalls = [
        s for s in suggestions if s.transfer_type == TransferType.RECALL and s.status == SuggestionStatus.PENDING
    ]
    return group_by_source(pending_recalls, stores, unit_price)


def group_by_destination(
    suggestions: list[Suggestion],
    stores: list[StoreRef] | dict[str, StoreRef] | None = None,
) -> list[StoreGroup]:
    """Daily transfer order: partition by to_location, most urgent first, then by revenue gain."""
    index = _store_index(stores)
    groups = [
        _build_group(key, items, index, items[0].to_location_name, 0.0, classify_transfer_reason)
        for key, items in _partition(suggestions, "to_location").items()
    ]
    return sorted(groups, key=lambda g: (priority_rank(g.highest_priority), -g.total_revenue))


def group_by_transfer_type(suggestions: list[Suggestion]) -> dict[TransferType, list[Suggestion]]:
    buckets: dict[TransferType, list[Suggestion]] = {t: [] for t in TransferType}
    for s in suggestions:
        buckets[TransferType(s.transfer_type)].append(s)
    return buckets


def filter_suggestions(
    suggestions: list[Suggestion],
    transfer_type: TransferType | str | None = None,
    priority: str | None = None,
    status: SuggestionStatus | str | None = None,
    search: str | None = None,
) -> list[Suggestion]:
    """Review-board filters. A None (or 'all') filter is not applied."""
    result = suggestions
    if transfer_type and transfer_type != "all":
        result = [s for s in result if s.transfer_type == TransferType(transfer_type)]
    if priority and priority != "all":
        result = [s for s in result if normalize_priority(s.priority) == normalize_priority(priority)]
    if status and status != "all":
        result = [s for s in result if s.status == SuggestionStatus(status)]
    if search and search.strip():
        q = search.strip().lower()
        result = [
            s
            for s in result
            if q in (s.fc_name or str(s.fc_id)).lower()
            or q in s.from_location_name.lower()
            or q in s.to_location_name.lower()
        ]
    return result
