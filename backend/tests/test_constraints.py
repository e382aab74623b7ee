"""
Tests for the constraint registry and the staged editor.

Runs against the in-memory repository, no database.
"""

import math
import uuid

import pytest

from rebalance.constraints import (
    CONSTRAINT_SPECS,
    BooleanConstraint,
    ConstraintEditor,
    ConstraintRegistry,
    NumericConstraint,
    coerce_input,
    get_spec,
    parse_stored_value,
    to_storage,
)
from rebalance.domain import ConstraintItem
from rebalance.exceptions import ConstraintBoundsError, ConstraintTypeError, UnknownConstraintError
from rebalance.memory import InMemoryConstraintRepository


def _item(key: str, value: dict, is_active: bool = True) -> ConstraintItem:
    return ConstraintItem(id=uuid.uuid4(), constraint_key=key, constraint_value=value, is_active=is_active)


@pytest.fixture
def items():
    return {
        "min_cover": _item("min_cover_weeks", {"weeks": 2}),
        "max_pct": _item("max_transfer_pct", {"pct": 50}),
        "weight": _item("priority_weight_store_tier", {"weight": 25}),
        "toggle": _item("no_broken_size_run", {"enabled": True}),
        "unknown": _item("legacy_rule", {"x": 1}),
        "malformed": _item("target_cover_weeks", {"weeks": "four"}),
    }


@pytest.fixture
def repository(items):
    return InMemoryConstraintRepository(items.values())


@pytest.fixture
def registry(repository):
    return ConstraintRegistry(repository)


class TestTypedValues:
    def test_numeric_record_parses_to_number(self):
        typed = parse_stored_value(get_spec("min_cover_weeks"), {"weeks": 2})
        assert isinstance(typed, NumericConstraint)
        assert typed.value == 2
        assert typed.unit == "weeks"

    def test_toggle_record_parses_to_boolean(self):
        typed = parse_stored_value(get_spec("enable_recall"), {"enabled": False})
        assert isinstance(typed, BooleanConstraint)
        assert typed.enabled is False

    def test_boolean_in_numeric_slot_is_rejected(self):
        with pytest.raises(ConstraintTypeError):
            parse_stored_value(get_spec("min_cover_weeks"), {"weeks": True})

    def test_number_in_toggle_slot_is_rejected(self):
        with pytest.raises(ConstraintTypeError):
            parse_stored_value(get_spec("no_broken_size_run"), {"enabled": 1})

    def test_missing_field_is_rejected(self):
        with pytest.raises(ConstraintTypeError):
            parse_stored_value(get_spec("max_transfer_pct"), {"weeks": 10})

    def test_unregistered_key(self):
        with pytest.raises(UnknownConstraintError):
            get_spec("legacy_rule")

    def test_every_registered_default_is_valid(self):
        for spec in CONSTRAINT_SPECS.values():
            typed = parse_stored_value(spec, {spec.field: spec.default})
            assert typed.kind == spec.value_type


class TestCoerceInput:
    def test_numeric_string_is_coerced(self):
        typed = coerce_input(get_spec("max_cover_weeks"), "8.5")
        assert typed.value == 8.5

    def test_bool_is_not_a_number(self):
        with pytest.raises(ConstraintTypeError):
            coerce_input(get_spec("max_cover_weeks"), True)

    def test_non_numeric_text_is_rejected(self):
        with pytest.raises(ConstraintTypeError):
            coerce_input(get_spec("max_cover_weeks"), "twelve")

    def test_nan_is_rejected(self):
        with pytest.raises(ConstraintTypeError):
            coerce_input(get_spec("max_cover_weeks"), math.nan)

    def test_percentage_above_100_is_out_of_bounds(self):
        with pytest.raises(ConstraintBoundsError):
            coerce_input(get_spec("max_transfer_pct"), 150)

    def test_negative_weeks_is_out_of_bounds(self):
        with pytest.raises(ConstraintBoundsError):
            coerce_input(get_spec("min_cover_weeks"), -1)

    def test_toggle_takes_only_bool(self):
        assert coerce_input(get_spec("enable_recall"), True).enabled is True
        with pytest.raises(ConstraintTypeError):
            coerce_input(get_spec("enable_recall"), "yes")

    def test_integral_values_are_stored_as_int(self):
        spec = get_spec("min_transfer_qty")
        assert to_storage(spec, coerce_input(spec, 3.0)) == {"units": 3}
        assert to_storage(get_spec("min_cover_weeks"), coerce_input(get_spec("min_cover_weeks"), 2.5)) == {
            "weeks": 2.5
        }


@pytest.mark.asyncio
class TestConstraintRegistry:
    async def test_list_visible_skips_unknown_and_malformed(self, registry):
        visible = await registry.list_visible()
        keys = [c.spec.key for c in visible]
        assert "legacy_rule" not in keys
        assert "target_cover_weeks" not in keys
        assert len(keys) == 4

    async def test_list_visible_orders_threshold_advanced_toggle(self, registry):
        groups = [c.spec.group for c in await registry.list_visible()]
        assert groups == ["threshold", "threshold", "advanced", "toggle"]

    async def test_update_value_leaves_is_active(self, registry, repository, items):
        target = items["min_cover"]
        await repository.update(target.id, is_active=False)

        updated = await registry.update_value(target.id, 3)
        assert updated.value.value == 3
        assert updated.is_active is False
        assert repository.items[target.id].constraint_value == {"weeks": 3}

    async def test_set_active_leaves_value(self, registry, repository, items):
        target = items["max_pct"]
        updated = await registry.set_active(target.id, False)
        assert updated.is_active is False
        assert repository.items[target.id].constraint_value == {"pct": 50}

    async def test_update_unknown_id(self, registry):
        with pytest.raises(UnknownConstraintError):
            await registry.update_value(uuid.uuid4(), 3)

    async def test_update_unregistered_key(self, registry, items):
        with pytest.raises(UnknownConstraintError):
            await registry.update_value(items["unknown"].id, 3)

    async def test_out_of_bounds_update_is_not_written(self, registry, repository, items):
        target = items["max_pct"]
        with pytest.raises(ConstraintBoundsError):
            await registry.update_value(target.id, 101)
        assert repository.items[target.id].constraint_value == {"pct": 50}

    async def test_ensure_defaults_creates_only_missing(self, registry, repository):
        created = await registry.ensure_defaults()
        created_keys = {c.spec.key for c in created}
        assert "min_cover_weeks" not in created_keys
        assert "target_cover_weeks" not in created_keys  # present, even if malformed
        assert "enable_recall" in created_keys
        assert len(repository.items) == 6 + len(created)

        assert await registry.ensure_defaults() == []


@pytest.mark.asyncio
class TestConstraintEditor:
    async def test_numeric_edits_are_staged_until_save(self, registry, repository, items):
        editor = ConstraintEditor(registry)
        target = items["min_cover"]

        assert await editor.edit(target.id, 5) is None
        assert editor.has_pending
        assert editor.pending == {target.id: 5}
        assert repository.items[target.id].constraint_value == {"weeks": 2}

        saved = await editor.save()
        assert [c.value.value for c in saved] == [5]
        assert repository.items[target.id].constraint_value == {"weeks": 5}
        assert not editor.has_pending

    async def test_toggle_edit_applies_immediately(self, registry, repository, items):
        editor = ConstraintEditor(registry)
        target = items["toggle"]

        resolved = await editor.edit(target.id, False)
        assert resolved.value.enabled is False
        assert repository.items[target.id].constraint_value == {"enabled": False}
        assert not editor.has_pending

    async def test_toggle_cannot_be_staged(self, registry, items):
        editor = ConstraintEditor(registry)
        with pytest.raises(ConstraintTypeError):
            await editor.stage(items["toggle"].id, False)

    async def test_invalid_stage_leaves_buffer_untouched(self, registry, items):
        editor = ConstraintEditor(registry)
        await editor.stage(items["weight"].id, 30)
        with pytest.raises(ConstraintBoundsError):
            await editor.stage(items["max_pct"].id, 500)
        assert editor.pending == {items["weight"].id: 30}

    async def test_discard_one_and_all(self, registry, repository, items):
        editor = ConstraintEditor(registry)
        await editor.stage(items["min_cover"].id, 4)
        await editor.stage(items["max_pct"].id, 40)

        editor.discard(items["min_cover"].id)
        assert set(editor.pending) == {items["max_pct"].id}

        editor.discard()
        assert not editor.has_pending
        assert await editor.save() == []
        assert repository.items[items["max_pct"].id].constraint_value == {"pct": 50}

    async def test_active_flip_is_independent_of_staged_value(self, registry, repository, items):
        editor = ConstraintEditor(registry)
        target = items["min_cover"]
        await editor.stage(target.id, 6)

        flipped = await editor.set_active(target.id, False)
        assert flipped.is_active is False
        assert flipped.value.value == 2
        assert editor.pending == {target.id: 6}
