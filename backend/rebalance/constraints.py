"""
Constraint Registry — tunable parameters that steer the allocation engine.

Every constraint_key has a fixed semantic type (number or boolean), a group
(threshold, advanced, toggle), and the name of the field inside
constraint_value that carries its scalar. That mapping lives here, in
CONSTRAINT_SPECS, and rows whose key is not registered are never listed or
editable.

Stored payloads are parsed into a tagged union at the repository boundary:

    {"weeks": 2}       -> NumericConstraint(kind="number", value=2.0, unit="weeks")
    {"enabled": true}  -> BooleanConstraint(kind="boolean", enabled=True)

Editing rules:
  - numeric edits are staged in a ConstraintEditor and written on save()
  - boolean edits and is_active flips are written immediately
  - a value edit never touches is_active, and an is_active flip never
    touches the value
"""

import uuid
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from rebalance.domain import ConstraintItem
from rebalance.exceptions import ConstraintBoundsError, ConstraintTypeError, UnknownConstraintError
from rebalance.repositories import ConstraintRepository

logger = structlog.get_logger()

GROUP_ORDER = ("threshold", "advanced", "toggle")


# ── Typed values ──────────────────────────────────────────────────────────


class NumericConstraint(BaseModel):
    kind: Literal["number"] = "number"
    value: float = Field(allow_inf_nan=False)
    unit: str = ""


class BooleanConstraint(BaseModel):
    kind: Literal["boolean"] = "boolean"
    enabled: bool


ConstraintValue = Annotated[Union[NumericConstraint, BooleanConstraint], Field(discriminator="kind")]
constraint_value_adapter = TypeAdapter(ConstraintValue)


# ── Registry metadata ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConstraintSpec:
    key: str
    value_type: Literal["number", "boolean"]
    group: Literal["threshold", "advanced", "toggle"]
    label: str
    field: str
    default: float | bool
    unit: str = ""
    min_value: float | None = None
    max_value: float | None = None
    description: str = ""


def _number(
    key: str,
    group: Literal["threshold", "advanced"],
    label: str,
    field: str,
    default: float,
    unit: str,
    min_value: float | None,
    max_value: float | None,
    description: str,
) -> ConstraintSpec:
    return ConstraintSpec(key, "number", group, label, field, default, unit, min_value, max_value, description)


def _toggle(key: str, label: str, default: bool, description: str) -> ConstraintSpec:
    return ConstraintSpec(key, "boolean", "toggle", label, "enabled", default, description=description)


CONSTRAINT_SPECS: dict[str, ConstraintSpec] = {
    spec.key: spec
    for spec in (
        # Thresholds
        _number("min_cover_weeks", "threshold", "Minimum cover", "weeks", 2, "weeks", 0, 52,
                "Weeks of cover a source store must keep after a transfer"),
        _number("target_cover_weeks", "threshold", "Target cover", "weeks", 4, "weeks", 0, 52,
                "Weeks of cover the engine aims for at the destination"),
        _number("max_cover_weeks", "threshold", "Maximum cover", "weeks", 12, "weeks", 0, 104,
                "Cover above which a store is considered overstocked"),
        _number("max_transfer_pct", "threshold", "Max transfer share", "pct", 50, "%", 0, 100,
                "Largest share of a source store's on-hand moved in one run"),
        _number("min_transfer_qty", "threshold", "Minimum transfer", "units", 2, "units", 0, 10000,
                "Suggestions below this quantity are dropped"),
        _number("cw_reserve_pct", "threshold", "Warehouse reserve", "pct", 10, "%", 0, 100,
                "Share of central warehouse stock held back from push allocation"),
        # Weighted priority rules
        _number("priority_weight_sales_velocity", "advanced", "Weight: sales velocity", "weight", 40, "%", 0, 100,
                "Priority weight of recent sell-through"),
        _number("priority_weight_store_tier", "advanced", "Weight: store tier", "weight", 25, "%", 0, 100,
                "Priority weight of the destination store tier"),
        _number("priority_weight_stockout_risk", "advanced", "Weight: stockout risk", "weight", 20, "%", 0, 100,
                "Priority weight of projected stockout"),
        _number("priority_weight_size_completeness", "advanced", "Weight: size completeness", "weight", 15, "%", 0, 100,
                "Priority weight of completing a size run"),
        # Feature toggles
        _toggle("no_broken_size_run", "No broken size runs", True,
                "Never leave a store with a partial size run after a transfer"),
        _toggle("allow_lateral_transfer", "Lateral transfers", True,
                "Allow store-to-store moves in addition to warehouse pushes"),
        _toggle("enable_recall", "Recall to warehouse", True,
                "Allow suggestions that return slow stock to the central warehouse"),
        _toggle("protect_new_arrivals", "Protect new arrivals", False,
                "Skip family codes received in the last two weeks"),
    )
}


def get_spec(key: str) -> ConstraintSpec:
    spec = CONSTRAINT_SPECS.get(key)
    if spec is None:
        raise UnknownConstraintError(f"Unregistered constraint key '{key}'")
    return spec


def parse_stored_value(spec: ConstraintSpec, raw: dict[str, Any] | None) -> ConstraintValue:
    """Parse a stored constraint_value record into its typed form."""
    if not isinstance(raw, dict) or spec.field not in raw:
        raise ConstraintTypeError(f"{spec.key}: stored value is missing field '{spec.field}'")
    scalar = raw[spec.field]
    if spec.value_type == "number":
        if isinstance(scalar, bool) or not isinstance(scalar, (int, float)):
            raise ConstraintTypeError(f"{spec.key}: expected a number in '{spec.field}', got {scalar!r}")
        payload = {"kind": "number", "value": scalar, "unit": spec.unit}
    else:
        if not isinstance(scalar, bool):
            raise ConstraintTypeError(f"{spec.key}: expected a boolean in '{spec.field}', got {scalar!r}")
        payload = {"kind": "boolean", "enabled": scalar}
    return constraint_value_adapter.validate_python(payload)


def coerce_input(spec: ConstraintSpec, value: Any) -> ConstraintValue:
    """Coerce an operator-supplied scalar to the registered type and check bounds."""
    if spec.value_type == "number":
        if isinstance(value, bool):
            raise ConstraintTypeError(f"{spec.key} takes a number, not a boolean")
        try:
            typed = NumericConstraint(value=value, unit=spec.unit)
        except ValidationError as exc:
            raise ConstraintTypeError(f"{spec.key} takes a number, got {value!r}") from exc
        if spec.min_value is not None and typed.value < spec.min_value:
            raise ConstraintBoundsError(f"{spec.key} must be >= {spec.min_value:g}")
        if spec.max_value is not None and typed.value > spec.max_value:
            raise ConstraintBoundsError(f"{spec.key} must be <= {spec.max_value:g}")
        return typed

    if not isinstance(value, bool):
        raise ConstraintTypeError(f"{spec.key} takes a boolean, got {value!r}")
    return BooleanConstraint(enabled=value)


def to_storage(spec: ConstraintSpec, typed: ConstraintValue) -> dict[str, Any]:
    """Serialize a typed value back to the stored record shape."""
    if isinstance(typed, NumericConstraint):
        scalar = int(typed.value) if float(typed.value).is_integer() else typed.value
        return {spec.field: scalar}
    return {spec.field: typed.enabled}


def default_value(spec: ConstraintSpec) -> dict[str, Any]:
    return {spec.field: spec.default}


# ── Registry service ──────────────────────────────────────────────────────


@dataclass
class ResolvedConstraint:
    """A stored row joined with its registry metadata and typed value."""

    id: uuid.UUID
    spec: ConstraintSpec
    value: ConstraintValue
    is_active: bool
    description: str | None

    @classmethod
    def from_item(cls, item: ConstraintItem) -> "ResolvedConstraint":
        spec = get_spec(item.constraint_key)
        return cls(
            id=item.id,
            spec=spec,
            value=parse_stored_value(spec, item.constraint_value),
            is_active=item.is_active,
            description=item.description or spec.description,
        )


class ConstraintRegistry:
    """Lists and edits the registered constraints of one tenant."""

    def __init__(self, repository: ConstraintRepository):
        self.repository = repository

    async def list_visible(self) -> list[ResolvedConstraint]:
        """Registered constraints ordered by group, then key. Unknown keys are skipped."""
        resolved = []
        for item in await self.repository.list():
            if item.constraint_key not in CONSTRAINT_SPECS:
                continue
            try:
                resolved.append(ResolvedConstraint.from_item(item))
            except ConstraintTypeError as exc:
                logger.warning("constraints.malformed_value", constraint_id=str(item.id), error=str(exc))
        resolved.sort(key=lambda c: (GROUP_ORDER.index(c.spec.group), c.spec.key))
        return resolved

    async def _load(self, constraint_id: uuid.UUID) -> tuple[ConstraintItem, ConstraintSpec]:
        item = await self.repository.get(constraint_id)
        if item is None:
            raise UnknownConstraintError(f"Constraint {constraint_id} not found")
        return item, get_spec(item.constraint_key)

    async def spec_for(self, constraint_id: uuid.UUID) -> ConstraintSpec:
        _, spec = await self._load(constraint_id)
        return spec

    async def update_value(self, constraint_id: uuid.UUID, value: Any) -> ResolvedConstraint:
        """Write a new value. is_active is left as stored."""
        item, spec = await self._load(constraint_id)
        stored = to_storage(spec, coerce_input(spec, value))
        updated = await self.repository.update(constraint_id, constraint_value=stored)
        logger.info("constraints.value_updated", constraint_key=item.constraint_key, value=stored)
        return ResolvedConstraint.from_item(updated)

    async def set_active(self, constraint_id: uuid.UUID, is_active: bool) -> ResolvedConstraint:
        """Flip whether the engine applies this rule. The value is left as stored."""
        item, _ = await self._load(constraint_id)
        updated = await self.repository.update(constraint_id, is_active=bool(is_active))
        logger.info("constraints.active_toggled", constraint_key=item.constraint_key, is_active=bool(is_active))
        return ResolvedConstraint.from_item(updated)

    async def ensure_defaults(self) -> list[ResolvedConstraint]:
        """Create any registered key the tenant does not have yet."""
        existing = {item.constraint_key for item in await self.repository.list()}
        created = []
        for spec in CONSTRAINT_SPECS.values():
            if spec.key in existing:
                continue
            item = await self.repository.create(
                constraint_key=spec.key,
                constraint_value=default_value(spec),
                is_active=True,
                description=spec.description,
            )
            created.append(ResolvedConstraint.from_item(item))
        if created:
            logger.info("constraints.defaults_created", count=len(created))
        return created


class ConstraintEditor:
    """
    Edit buffer over a ConstraintRegistry.

    Numeric values are held until save(); boolean values and is_active
    flips go straight to the registry.
    """

    def __init__(self, registry: ConstraintRegistry):
        self.registry = registry
        self._staged: dict[uuid.UUID, NumericConstraint] = {}

    @property
    def pending(self) -> dict[uuid.UUID, float]:
        return {cid: typed.value for cid, typed in self._staged.items()}

    @property
    def has_pending(self) -> bool:
        return bool(self._staged)

    async def stage(self, constraint_id: uuid.UUID, value: Any) -> None:
        """Buffer a numeric edit. Boolean keys cannot be staged."""
        spec = await self.registry.spec_for(constraint_id)
        if spec.value_type != "number":
            raise ConstraintTypeError(f"{spec.key} is a toggle and is applied immediately")
        self._staged[constraint_id] = coerce_input(spec, value)

    async def edit(self, constraint_id: uuid.UUID, value: Any) -> ResolvedConstraint | None:
        """Stage numbers; apply booleans immediately and return the updated row."""
        spec = await self.registry.spec_for(constraint_id)
        if spec.value_type == "number":
            await self.stage(constraint_id, value)
            return None
        return await self.registry.update_value(constraint_id, value)

    async def set_active(self, constraint_id: uuid.UUID, is_active: bool) -> ResolvedConstraint:
        return await self.registry.set_active(constraint_id, is_active)

    def discard(self, constraint_id: uuid.UUID | None = None) -> None:
        if constraint_id is None:
            self._staged.clear()
        else:
            self._staged.pop(constraint_id, None)

    async def save(self) -> list[ResolvedConstraint]:
        """Write every staged numeric edit, then clear the buffer."""
        saved = []
        for constraint_id, typed in list(self._staged.items()):
            saved.append(await self.registry.update_value(constraint_id, typed.value))
            self._staged.pop(constraint_id, None)
        return saved
