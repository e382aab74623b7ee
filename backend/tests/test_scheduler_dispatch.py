import asyncio
from types import SimpleNamespace

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.rebalance import run_engine_pass, run_recall_scan
from workers.scheduler import dispatch_active_tenants


def _sqlite_db(tmp_path, name: str):
    db_url = f"sqlite+aiosqlite:///{tmp_path / name}"
    engine = create_async_engine(db_url, echo=False)
    return db_url, engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def test_dispatch_fans_out_only_active_and_trial(tmp_path, monkeypatch):
    from db.models import Customer

    db_url, engine, session_factory = _sqlite_db(tmp_path, "dispatch.db")

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add_all(
                [
                    Customer(
                        customer_id="00000000-0000-0000-0000-000000000101",
                        name="Active Tenant",
                        email="active@example.com",
                        status="active",
                        plan="professional",
                    ),
                    Customer(
                        customer_id="00000000-0000-0000-0000-000000000102",
                        name="Trial Tenant",
                        email="trial@example.com",
                        status="trial",
                        plan="starter",
                    ),
                    Customer(
                        customer_id="00000000-0000-0000-0000-000000000103",
                        name="Churned Tenant",
                        email="churned@example.com",
                        status="churned",
                        plan="starter",
                    ),
                ]
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())

    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    dispatched_calls: list[tuple[str, dict]] = []

    def _capture_send_task(task_name: str, kwargs: dict):
        dispatched_calls.append((task_name, kwargs))
        return None

    monkeypatch.setattr("workers.scheduler.celery_app.send_task", _capture_send_task)

    result = dispatch_active_tenants.run(
        task_name="workers.rebalance.run_engine_pass",
        task_kwargs={"mode": "tiers"},
    )
    assert result["status"] == "success"
    assert result["customer_count"] == 2
    assert result["dispatched_count"] == 2

    assert {task for task, _ in dispatched_calls} == {"workers.rebalance.run_engine_pass"}
    assert all(kwargs["mode"] == "tiers" for _, kwargs in dispatched_calls)
    assert {kwargs["customer_id"] for _, kwargs in dispatched_calls} == {
        "00000000-0000-0000-0000-000000000101",
        "00000000-0000-0000-0000-000000000102",
    }


def test_dispatch_refuses_foreign_tasks(monkeypatch):
    sent = []
    monkeypatch.setattr("workers.scheduler.celery_app.send_task", lambda *a, **k: sent.append(a))

    result = dispatch_active_tenants.run(task_name="celery.backend_cleanup")
    assert result == {"status": "failed", "reason": "invalid_task_name", "task_name": "celery.backend_cleanup"}
    assert sent == []


def test_recall_scan_without_snapshot_is_skipped(tmp_path, monkeypatch):
    db_url, engine, _ = _sqlite_db(tmp_path, "scan.db")

    async def _schema() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_schema())
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    result = run_recall_scan.run(customer_id="00000000-0000-0000-0000-000000000101")
    assert result["status"] == "skipped"
    assert result["reason"] == "no_snapshot"


def test_engine_pass_rejects_unknown_mode():
    result = run_engine_pass.run(customer_id="00000000-0000-0000-0000-000000000101", mode="V3")
    assert result["status"] == "failed"
    assert result["reason"] == "invalid_mode"
