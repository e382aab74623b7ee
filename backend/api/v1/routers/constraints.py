"""
Constraints Router — tenant allocation policy.

Each constraint row is resolved against the registry metadata before it is
shown or written, so a threshold is always a bounded number and a toggle is
always a boolean. Toggles and active flags apply immediately; numeric edits
are submitted together through PUT and validated before any is written.
"""

from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, StrictBool

from api.deps import get_constraint_repository
from rebalance.constraints import (
    CONSTRAINT_SPECS,
    GROUP_ORDER,
    BooleanConstraint,
    ConstraintEditor,
    ConstraintRegistry,
    ConstraintSpec,
    ResolvedConstraint,
)
from rebalance.repositories import ConstraintRepository

router = APIRouter(prefix="/api/v1/constraints", tags=["constraints"])

# StrictBool: a string such as "1" is read as a number, never as a toggle.
ScalarValue = Union[StrictBool, int, float]


# ─── Schemas ────────────────────────────────────────────────────────────────

class ConstraintMetadata(BaseModel):
    key: str
    value_type: str
    group: str
    label: str
    field: str
    default: ScalarValue
    unit: str
    min_value: float | None
    max_value: float | None
    description: str


class ConstraintResponse(BaseModel):
    constraint_id: UUID
    constraint_key: str
    label: str
    group: str
    value_type: str
    unit: str
    value: ScalarValue
    is_active: bool
    description: str | None
    min_value: float | None
    max_value: float | None


class ConstraintPatch(BaseModel):
    """Immediate change: a toggle value, an active flag, or both."""
    value: ScalarValue | None = None
    is_active: bool | None = None


class ConstraintBulkSave(BaseModel):
    """Staged numeric edits keyed by constraint id."""
    values: dict[UUID, ScalarValue]


def _metadata(spec: ConstraintSpec) -> ConstraintMetadata:
    return ConstraintMetadata(
        key=spec.key,
        value_type=spec.value_type,
        group=spec.group,
        label=spec.label,
        field=spec.field,
        default=spec.default,
        unit=spec.unit,
        min_value=spec.min_value,
        max_value=spec.max_value,
        description=spec.description,
    )


def _response(resolved: ResolvedConstraint) -> ConstraintResponse:
    spec = resolved.spec
    value = resolved.value.enabled if isinstance(resolved.value, BooleanConstraint) else resolved.value.value
    return ConstraintResponse(
        constraint_id=resolved.id,
        constraint_key=spec.key,
        label=spec.label,
        group=spec.group,
        value_type=spec.value_type,
        unit=spec.unit,
        value=value,
        is_active=resolved.is_active,
        description=resolved.description,
        min_value=spec.min_value,
        max_value=spec.max_value,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.get("/", response_model=list[ConstraintResponse])
async def list_constraints(repository: ConstraintRepository = Depends(get_constraint_repository)):
    """Registered constraints of the tenant, grouped threshold → advanced → toggle."""
    registry = ConstraintRegistry(repository)
    return [_response(c) for c in await registry.list_visible()]


@router.get("/metadata", response_model=list[ConstraintMetadata])
async def list_metadata():
    specs = sorted(CONSTRAINT_SPECS.values(), key=lambda s: (GROUP_ORDER.index(s.group), s.key))
    return [_metadata(spec) for spec in specs]


@router.patch("/{constraint_id}", response_model=ConstraintResponse)
async def patch_constraint(
    constraint_id: UUID,
    patch: ConstraintPatch,
    repository: ConstraintRepository = Depends(get_constraint_repository),
):
    """Apply a toggle value and/or active flag right away. Numeric values are saved through PUT."""
    registry = ConstraintRegistry(repository)
    # 404 before anything is written
    spec = await registry.spec_for(constraint_id)
    if patch.value is not None and spec.value_type == "number":
        raise HTTPException(
            status_code=422,
            detail=f"{spec.key} is a numeric constraint; stage it and save with PUT /api/v1/constraints/",
        )
    resolved = None
    if patch.value is not None:
        resolved = await registry.update_value(constraint_id, patch.value)
    if patch.is_active is not None:
        resolved = await registry.set_active(constraint_id, patch.is_active)
    if resolved is None:
        resolved = ResolvedConstraint.from_item(await repository.get(constraint_id))
    return _response(resolved)


@router.put("/", response_model=list[ConstraintResponse])
async def save_constraints(
    body: ConstraintBulkSave,
    repository: ConstraintRepository = Depends(get_constraint_repository),
):
    """Save numeric edits together. Nothing is written if any value is rejected."""
    editor = ConstraintEditor(ConstraintRegistry(repository))
    for constraint_id, value in body.values.items():
        await editor.stage(constraint_id, value)
    return [_response(c) for c in await editor.save()]


@router.post("/defaults", response_model=list[ConstraintResponse], status_code=201)
async def create_default_constraints(repository: ConstraintRepository = Depends(get_constraint_repository)):
    """Create every registered constraint the tenant is missing, with its default value."""
    registry = ConstraintRegistry(repository)
    return [_response(c) for c in await registry.ensure_defaults()]
