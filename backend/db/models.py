"""
RebalanceOps Database Models

Multi-tenant via customer_id on all tables.

Tables:
  Core:
  1. customers              - Tenant organizations
  2. stores                 - Retail stores and the central warehouse
  3. family_codes           - Product families (the allocation unit)
  4. inventory_positions    - Per-SKU on-hand snapshots
  5. demand_states          - Per store/FC demand signals

  Rebalancing:
  6. allocation_constraints - Tunable engine parameters (one row per key)
  7. rebalance_runs         - One batch per engine pass
  8. rebalance_suggestions  - Proposed push/lateral/recall moves
  9. suggestion_decisions   - Approve/reject/edit log
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    plan = Column(String(50), nullable=False, default="starter")
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("plan IN ('starter', 'professional', 'enterprise')", name="ck_customer_plan"),
        CheckConstraint("status IN ('active', 'inactive', 'trial', 'churned')", name="ck_customer_status"),
    )

    stores = relationship("Store", back_populates="customer", cascade="all, delete-orphan")


# ─── 2. Stores ──────────────────────────────────────────────────────────────


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    name = Column(String(255), nullable=False)
    store_code = Column(String(50))
    region = Column(String(100))
    tier = Column(String(1))  # S, A, B, C
    location_type = Column(String(20), nullable=False, default="retail")
    capacity = Column(Integer)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_stores_customer", "customer_id"),
        CheckConstraint("status IN ('active', 'inactive', 'onboarding')", name="ck_store_status"),
        CheckConstraint("location_type IN ('retail', 'central_warehouse')", name="ck_store_location_type"),
        CheckConstraint("tier IS NULL OR tier IN ('S', 'A', 'B', 'C')", name="ck_store_tier"),
    )

    customer = relationship("Customer", back_populates="stores")


# ─── 3. Family Codes ───────────────────────────────────────────────────────


class FamilyCode(Base):
    __tablename__ = "family_codes"

    fc_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    fc_code = Column(String(100), nullable=False)
    fc_name = Column(String(255))
    category = Column(String(100))
    product_created_date = Column(Date)

    __table_args__ = (UniqueConstraint("customer_id", "fc_code", name="uq_family_code"),)


# ─── 4. Inventory Positions ────────────────────────────────────────────────


class InventoryPosition(Base):
    __tablename__ = "inventory_positions"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    fc_id = Column(GUID(), ForeignKey("family_codes.fc_id"), nullable=False)
    sku = Column(String(100))
    snapshot_date = Column(Date, nullable=False)
    on_hand = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_positions_customer_snapshot", "customer_id", "snapshot_date"),
        Index("ix_positions_store_fc", "store_id", "fc_id", "snapshot_date"),
        CheckConstraint("on_hand >= 0", name="ck_position_on_hand_positive"),
    )


# ─── 5. Demand States ──────────────────────────────────────────────────────


class DemandState(Base):
    __tablename__ = "demand_states"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    fc_id = Column(GUID(), ForeignKey("family_codes.fc_id"), nullable=False)
    sku = Column(String(100))
    avg_daily_sales = Column(Float, nullable=False, default=0.0)
    total_sold = Column(Integer, nullable=False, default=0)  # trailing 30 days
    sales_velocity = Column(Float)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_demand_store_fc", "customer_id", "store_id", "fc_id"),)


# ═══════════════════════════════════════════════════════════════════════════
# Rebalancing (6-9)
# ═══════════════════════════════════════════════════════════════════════════


# ─── 6. Allocation Constraints ─────────────────────────────────────────────


class AllocationConstraint(Base):
    """One tunable rule read by the allocation engine.

    The shape of constraint_value is fixed per constraint_key by the
    registry in rebalance.constraints, not by this table.
    """

    __tablename__ = "allocation_constraints"

    constraint_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    constraint_key = Column(String(100), nullable=False)
    constraint_value = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("customer_id", "constraint_key", name="uq_constraint_key"),)


# ─── 7. Rebalance Runs ─────────────────────────────────────────────────────


class RebalanceRun(Base):
    __tablename__ = "rebalance_runs"

    run_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    run_type = Column(String(20), nullable=False)  # allocation, rebalance, recall
    engine_mode = Column(String(20))  # V1, V2, both
    status = Column(String(20), nullable=False, default="running")
    total_suggestions = Column(Integer, nullable=False, default=0)
    total_units = Column(Integer, nullable=False, default=0)
    push_units = Column(Integer, nullable=False, default=0)
    lateral_units = Column(Integer, nullable=False, default=0)
    recall_units = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_runs_customer_started", "customer_id", "started_at"),
        CheckConstraint("status IN ('running', 'completed', 'failed')", name="ck_run_status"),
        CheckConstraint("run_type IN ('allocation', 'rebalance', 'recall')", name="ck_run_type"),
    )

    suggestions = relationship("RebalanceSuggestion", back_populates="run")


# ─── 8. Rebalance Suggestions ──────────────────────────────────────────────


class RebalanceSuggestion(Base):
    __tablename__ = "rebalance_suggestions"

    suggestion_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    run_id = Column(GUID(), ForeignKey("rebalance_runs.run_id"), nullable=False)
    fc_id = Column(GUID(), nullable=False)
    fc_name = Column(String(255))
    transfer_type = Column(String(10), nullable=False)
    from_location = Column(GUID())
    from_location_name = Column(String(255))
    from_location_type = Column(String(20))
    to_location = Column(GUID())
    to_location_name = Column(String(255))
    to_location_type = Column(String(20))
    qty = Column(Integer, nullable=False)
    reason = Column(Text)
    priority = Column(String(10), nullable=False, default="P2")
    from_weeks_cover = Column(Float)
    to_weeks_cover = Column(Float)
    balanced_weeks_cover = Column(Float)
    potential_revenue_gain = Column(Float, nullable=False, default=0.0)
    logistics_cost_estimate = Column(Float, nullable=False, default=0.0)
    net_benefit = Column(Float, nullable=False, default=0.0)
    status = Column(String(10), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    decided_at = Column(DateTime)
    decided_by = Column(String(255))

    __table_args__ = (
        Index("ix_suggestions_customer_status", "customer_id", "status"),
        Index("ix_suggestions_run", "run_id"),
        CheckConstraint("qty >= 0", name="ck_suggestion_qty_non_negative"),
        CheckConstraint("transfer_type IN ('push', 'lateral', 'recall')", name="ck_suggestion_transfer_type"),
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_suggestion_status"),
    )

    run = relationship("RebalanceRun", back_populates="suggestions")
    decisions = relationship("SuggestionDecision", back_populates="suggestion")


# ─── 9. Suggestion Decisions ───────────────────────────────────────────────


class SuggestionDecision(Base):
    """Captures who approved, rejected, or edited a suggestion, and the quantities."""

    __tablename__ = "suggestion_decisions"

    decision_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    suggestion_id = Column(GUID(), ForeignKey("rebalance_suggestions.suggestion_id"), nullable=False)
    decision_type = Column(String(20), nullable=False)  # approved, rejected, edited
    original_qty = Column(Integer, nullable=False)
    final_qty = Column(Integer, nullable=False)
    decided_by = Column(String(255))
    decided_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_suggestion_decisions_suggestion", "suggestion_id"),
        Index("ix_suggestion_decisions_customer", "customer_id"),
        CheckConstraint("decision_type IN ('approved', 'rejected', 'edited')", name="ck_suggestion_decision_type"),
    )

    suggestion = relationship("RebalanceSuggestion", back_populates="decisions")
