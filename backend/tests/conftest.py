"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_tenant_db
from api.main import app
from db.session import Base

# In-memory SQLite for tests (no RLS, JSON instead of JSONB).
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CUSTOMER_ID = "00000000-0000-0000-0000-000000000001"

LATEST_SNAPSHOT = date(2026, 10, 18)
PREVIOUS_SNAPSHOT = date(2026, 10, 11)


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "planner@rebalanceops.test",
        "customer_id": CUSTOMER_ID,
    }


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return session directly."""
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def seed_tenant(db: AsyncSession, customer_id: uuid.UUID) -> dict:
    """
    One tenant with a central warehouse, two retail stores and two snapshots.

    Against default recall thresholds the latest snapshot yields exactly two
    recalls: Đầm lụa at Hà Nội (never sells, P1, 11 units) and Áo sơ mi at
    Sài Gòn (slow seller, P2, 3 units). The gift card is non-fashion.
    """
    from db.models import Customer, DemandState, FamilyCode, InventoryPosition, Store

    db.add(
        Customer(
            customer_id=customer_id,
            name="Test Fashion",
            email=f"ops-{customer_id}@fashion.test",
            plan="professional",
        )
    )
    await db.flush()

    warehouse = Store(
        customer_id=customer_id, name="Kho tổng", store_code="CW", location_type="central_warehouse", capacity=50000
    )
    hanoi = Store(customer_id=customer_id, name="Store Hà Nội", store_code="HN01", region="North", tier="A")
    saigon = Store(customer_id=customer_id, name="Store Sài Gòn", store_code="SG01", region="South", tier="S")
    db.add_all([warehouse, hanoi, saigon])
    await db.flush()

    dress = FamilyCode(customer_id=customer_id, fc_code="FC-DRESS-01", fc_name="Đầm lụa", category="Dress",
                       product_created_date=date(2026, 3, 1))
    tee = FamilyCode(customer_id=customer_id, fc_code="FC-TEE-03", fc_name="Áo thun", category="Top")
    shirt = FamilyCode(customer_id=customer_id, fc_code="FC-SHIRT-02", fc_name="Áo sơ mi", category="Top")
    gift = FamilyCode(customer_id=customer_id, fc_code="GC-001", fc_name="Gift card 500k", category="Other")
    db.add_all([dress, tee, shirt, gift])
    await db.flush()

    def position(store, fc, sku, snapshot, on_hand, available=None):
        return InventoryPosition(
            customer_id=customer_id,
            store_id=store.store_id,
            fc_id=fc.fc_id,
            sku=sku,
            snapshot_date=snapshot,
            on_hand=on_hand,
            available=on_hand if available is None else available,
        )

    db.add_all(
        [
            # latest
            position(hanoi, dress, "DRESS-01-S", LATEST_SNAPSHOT, 7),
            position(hanoi, dress, "DRESS-01-M", LATEST_SNAPSHOT, 5),
            position(hanoi, tee, "TEE-03-M", LATEST_SNAPSHOT, 10, available=8),
            position(saigon, shirt, "SHIRT-02-M", LATEST_SNAPSHOT, 4),
            position(saigon, gift, "GC-001", LATEST_SNAPSHOT, 50),
            position(warehouse, dress, "DRESS-01-M", LATEST_SNAPSHOT, 100),
            # previous
            position(hanoi, dress, "DRESS-01-S", PREVIOUS_SNAPSHOT, 7),
            position(hanoi, dress, "DRESS-01-M", PREVIOUS_SNAPSHOT, 5),
            position(hanoi, tee, "TEE-03-M", PREVIOUS_SNAPSHOT, 24),
            position(saigon, shirt, "SHIRT-02-M", PREVIOUS_SNAPSHOT, 4),
            position(saigon, gift, "GC-001", PREVIOUS_SNAPSHOT, 50),
            position(warehouse, dress, "DRESS-01-M", PREVIOUS_SNAPSHOT, 100),
        ]
    )
    db.add_all(
        [
            DemandState(customer_id=customer_id, store_id=hanoi.store_id, fc_id=tee.fc_id, sku="TEE-03-M",
                        avg_daily_sales=1.5, total_sold=45),
            DemandState(customer_id=customer_id, store_id=saigon.store_id, fc_id=shirt.fc_id, sku="SHIRT-02-M",
                        avg_daily_sales=0.045, total_sold=1),
        ]
    )
    await db.flush()

    return {
        "customer_id": customer_id,
        "warehouse": warehouse,
        "hanoi": hanoi,
        "saigon": saigon,
        "dress": dress,
        "tee": tee,
        "shirt": shirt,
        "gift": gift,
    }


@pytest.fixture
async def seeded_tenant(test_db):
    """Stores, family codes, snapshots and demand only: no constraints, runs or suggestions."""
    seed = await seed_tenant(test_db, uuid.UUID(CUSTOMER_ID))
    await test_db.commit()
    return seed


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with a tenant, constraints, and one run of suggestions."""
    from db.models import AllocationConstraint, RebalanceRun, RebalanceSuggestion

    customer_id = uuid.UUID(CUSTOMER_ID)
    seed = await seed_tenant(test_db, customer_id)
    warehouse, hanoi, saigon = seed["warehouse"], seed["hanoi"], seed["saigon"]

    constraints = {
        "min_cover_weeks": AllocationConstraint(
            customer_id=customer_id, constraint_key="min_cover_weeks", constraint_value={"weeks": 2}
        ),
        "max_transfer_pct": AllocationConstraint(
            customer_id=customer_id, constraint_key="max_transfer_pct", constraint_value={"pct": 50}
        ),
        "no_broken_size_run": AllocationConstraint(
            customer_id=customer_id, constraint_key="no_broken_size_run", constraint_value={"enabled": True}
        ),
        "legacy_rule": AllocationConstraint(
            customer_id=customer_id, constraint_key="legacy_rule", constraint_value={"x": 1}
        ),
        "target_cover_weeks": AllocationConstraint(
            customer_id=customer_id, constraint_key="target_cover_weeks", constraint_value={"weeks": "four"}
        ),
    }
    test_db.add_all(constraints.values())

    run = RebalanceRun(customer_id=customer_id, run_type="rebalance", engine_mode="V2", status="completed",
                       total_suggestions=5, total_units=29)
    test_db.add(run)
    await test_db.flush()

    def suggestion(transfer_type, source, dest, fc, qty, reason, priority, status="pending", revenue=0.0):
        return RebalanceSuggestion(
            customer_id=customer_id,
            run_id=run.run_id,
            fc_id=fc.fc_id,
            fc_name=fc.fc_name,
            transfer_type=transfer_type,
            from_location=source.store_id,
            from_location_name=source.name,
            from_location_type=source.location_type,
            to_location=dest.store_id,
            to_location_name=dest.name,
            to_location_type=dest.location_type,
            qty=qty,
            reason=reason,
            priority=priority,
            from_weeks_cover=999.0 if transfer_type == "recall" else 6.0,
            potential_revenue_gain=revenue,
            status=status,
        )

    suggestions = {
        "push": suggestion("push", warehouse, hanoi, seed["tee"], 5, "V1: stockout risk", "P1", revenue=900000.0),
        "lateral": suggestion("lateral", saigon, hanoi, seed["shirt"], 10, "V2: velocity cao tại điểm nhận", "high",
                              revenue=1500000.0),
        "recall_hanoi": suggestion("recall", hanoi, warehouse, seed["dress"], 7, "DOC = 120 ngày. Hàng tồn quá lâu",
                                   "P1"),
        "recall_saigon": suggestion("recall", saigon, warehouse, seed["shirt"], 4, "velocity thấp", "P2"),
        "recall_done": suggestion("recall", hanoi, warehouse, seed["tee"], 3, "Hết mùa", "P3", status="approved"),
    }
    test_db.add_all(suggestions.values())
    await test_db.flush()

    await test_db.commit()

    return {**seed, "constraints": constraints, "run": run, "suggestions": suggestions}
