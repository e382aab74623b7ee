"""
Initial schema - tenants, stock snapshots and rebalancing tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _tenant() -> sa.Column:
    return sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.customer_id"), nullable=False)


def upgrade() -> None:
    # 1. Customers
    op.create_table(
        "customers",
        _pk("customer_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("plan", sa.String(50), nullable=False, server_default="starter"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("plan IN ('starter', 'professional', 'enterprise')", name="ck_customer_plan"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'trial', 'churned')", name="ck_customer_status"),
    )

    # 2. Stores (retail locations and the central warehouse)
    op.create_table(
        "stores",
        _pk("store_id"),
        _tenant(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("store_code", sa.String(50)),
        sa.Column("region", sa.String(100)),
        sa.Column("tier", sa.String(1)),
        sa.Column("location_type", sa.String(20), nullable=False, server_default="retail"),
        sa.Column("capacity", sa.Integer),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive', 'onboarding')", name="ck_store_status"),
        sa.CheckConstraint("location_type IN ('retail', 'central_warehouse')", name="ck_store_location_type"),
        sa.CheckConstraint("tier IS NULL OR tier IN ('S', 'A', 'B', 'C')", name="ck_store_tier"),
    )
    op.create_index("ix_stores_customer", "stores", ["customer_id"])

    # 3. Family codes
    op.create_table(
        "family_codes",
        _pk("fc_id"),
        _tenant(),
        sa.Column("fc_code", sa.String(100), nullable=False),
        sa.Column("fc_name", sa.String(255)),
        sa.Column("category", sa.String(100)),
        sa.Column("product_created_date", sa.Date),
        sa.UniqueConstraint("customer_id", "fc_code", name="uq_family_code"),
    )

    # 4. Inventory positions (daily snapshot per SKU)
    op.create_table(
        "inventory_positions",
        _pk("id"),
        _tenant(),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id"), nullable=False),
        sa.Column("fc_id", UUID(as_uuid=True), sa.ForeignKey("family_codes.fc_id"), nullable=False),
        sa.Column("sku", sa.String(100)),
        sa.Column("snapshot_date", sa.Date, nullable=False),
        sa.Column("on_hand", sa.Integer, nullable=False, server_default="0"),
        sa.Column("available", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("on_hand >= 0", name="ck_position_on_hand_positive"),
    )
    op.create_index("ix_positions_customer_snapshot", "inventory_positions", ["customer_id", "snapshot_date"])
    op.create_index("ix_positions_store_fc", "inventory_positions", ["store_id", "fc_id", "snapshot_date"])

    # 5. Demand states
    op.create_table(
        "demand_states",
        _pk("id"),
        _tenant(),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id"), nullable=False),
        sa.Column("fc_id", UUID(as_uuid=True), sa.ForeignKey("family_codes.fc_id"), nullable=False),
        sa.Column("sku", sa.String(100)),
        sa.Column("avg_daily_sales", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_sold", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sales_velocity", sa.Float),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_demand_store_fc", "demand_states", ["customer_id", "store_id", "fc_id"])

    # 6. Allocation constraints
    op.create_table(
        "allocation_constraints",
        _pk("constraint_id"),
        _tenant(),
        sa.Column("constraint_key", sa.String(100), nullable=False),
        sa.Column("constraint_value", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("customer_id", "constraint_key", name="uq_constraint_key"),
    )

    # 7. Rebalance runs
    op.create_table(
        "rebalance_runs",
        _pk("run_id"),
        _tenant(),
        sa.Column("run_type", sa.String(20), nullable=False),
        sa.Column("engine_mode", sa.String(20)),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("total_suggestions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("push_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("lateral_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("recall_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text),
        sa.Column("started_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime),
        sa.CheckConstraint("status IN ('running', 'completed', 'failed')", name="ck_run_status"),
        sa.CheckConstraint("run_type IN ('allocation', 'rebalance', 'recall')", name="ck_run_type"),
    )
    op.create_index("ix_runs_customer_started", "rebalance_runs", ["customer_id", "started_at"])

    # 8. Rebalance suggestions
    op.create_table(
        "rebalance_suggestions",
        _pk("suggestion_id"),
        _tenant(),
        sa.Column("run_id", UUID(as_uuid=True), sa.ForeignKey("rebalance_runs.run_id"), nullable=False),
        sa.Column("fc_id", UUID(as_uuid=True), nullable=False),
        sa.Column("fc_name", sa.String(255)),
        sa.Column("transfer_type", sa.String(10), nullable=False),
        sa.Column("from_location", UUID(as_uuid=True)),
        sa.Column("from_location_name", sa.String(255)),
        sa.Column("from_location_type", sa.String(20)),
        sa.Column("to_location", UUID(as_uuid=True)),
        sa.Column("to_location_name", sa.String(255)),
        sa.Column("to_location_type", sa.String(20)),
        sa.Column("qty", sa.Integer, nullable=False),
        sa.Column("reason", sa.Text),
        sa.Column("priority", sa.String(10), nullable=False, server_default="P2"),
        sa.Column("from_weeks_cover", sa.Float),
        sa.Column("to_weeks_cover", sa.Float),
        sa.Column("balanced_weeks_cover", sa.Float),
        sa.Column("potential_revenue_gain", sa.Float, nullable=False, server_default="0"),
        sa.Column("logistics_cost_estimate", sa.Float, nullable=False, server_default="0"),
        sa.Column("net_benefit", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime),
        sa.Column("decided_by", sa.String(255)),
        sa.CheckConstraint("qty >= 0", name="ck_suggestion_qty_non_negative"),
        sa.CheckConstraint("transfer_type IN ('push', 'lateral', 'recall')", name="ck_suggestion_transfer_type"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_suggestion_status"),
    )
    op.create_index("ix_suggestions_customer_status", "rebalance_suggestions", ["customer_id", "status"])
    op.create_index("ix_suggestions_run", "rebalance_suggestions", ["run_id"])

    # 9. Suggestion decisions
    op.create_table(
        "suggestion_decisions",
        _pk("decision_id"),
        _tenant(),
        sa.Column(
            "suggestion_id",
            UUID(as_uuid=True),
            sa.ForeignKey("rebalance_suggestions.suggestion_id"),
            nullable=False,
        ),
        sa.Column("decision_type", sa.String(20), nullable=False),
        sa.Column("original_qty", sa.Integer, nullable=False),
        sa.Column("final_qty", sa.Integer, nullable=False),
        sa.Column("decided_by", sa.String(255)),
        sa.Column("decided_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "decision_type IN ('approved', 'rejected', 'edited')", name="ck_suggestion_decision_type"
        ),
    )
    op.create_index("ix_suggestion_decisions_suggestion", "suggestion_decisions", ["suggestion_id"])
    op.create_index("ix_suggestion_decisions_customer", "suggestion_decisions", ["customer_id"])


def downgrade() -> None:
    for table in (
        "suggestion_decisions",
        "rebalance_suggestions",
        "rebalance_runs",
        "allocation_constraints",
        "demand_states",
        "inventory_positions",
        "family_codes",
        "stores",
        "customers",
    ):
        op.drop_table(table)
