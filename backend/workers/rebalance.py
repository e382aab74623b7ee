"""
Rebalance Workers — scheduled engine passes per tenant.

  run_recall_scan   nightly local recall scan (rebalance.recall)
  run_engine_pass   remote engine pass: rebalance, V1/V2/both allocation, tiers

Queue: engine
"""

import asyncio
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.rebalance.run_recall_scan",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def run_recall_scan(self, customer_id: str):
    """
    Scan the tenant's latest snapshots for stock to recall to the central warehouse.

    A tenant with no snapshot yet is skipped, not retried.
    """
    task_id = self.request.id or "manual"
    logger.info("recall_scan.started", customer_id=customer_id, task_id=task_id)

    async def _scan():
        from core.config import get_settings
        from db.session import set_tenant_context
        from rebalance.exceptions import NoSnapshotError
        from rebalance.recall import run_recall_engine

        engine = create_async_engine(get_settings().database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as db:
                await set_tenant_context(db, customer_id)
                try:
                    result = await run_recall_engine(db, uuid.UUID(customer_id))
                except NoSnapshotError:
                    logger.info("recall_scan.skipped", customer_id=customer_id, reason="no_snapshot")
                    return {"status": "skipped", "customer_id": customer_id, "reason": "no_snapshot"}
                return {
                    "status": "success",
                    "customer_id": customer_id,
                    "run_id": str(result.run_id),
                    "total_suggestions": result.total_suggestions,
                    "total_units": result.total_units,
                    "stores_analyzed": result.stores_analyzed,
                }
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_scan())
    except Exception as exc:  # noqa: BLE001
        logger.error("recall_scan.failed", customer_id=customer_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    logger.info("recall_scan.completed", **summary)
    return summary


@celery_app.task(
    name="workers.rebalance.run_engine_pass",
    bind=True,
    max_retries=1,
    default_retry_delay=600,
    acks_late=True,
)
def run_engine_pass(self, customer_id: str, mode: str = "rebalance"):
    """Trigger one engine pass for a tenant through RunTrigger."""
    from rebalance.engine import EngineMode, RunTrigger

    task_id = self.request.id or "manual"
    if mode not in {m.value for m in EngineMode}:
        logger.error("engine_pass.invalid_mode", customer_id=customer_id, mode=mode)
        return {"status": "failed", "customer_id": customer_id, "reason": "invalid_mode", "mode": mode}
    logger.info("engine_pass.started", customer_id=customer_id, mode=mode, task_id=task_id)

    async def _run():
        from core.config import get_settings
        from db.session import set_tenant_context

        engine = create_async_engine(get_settings().database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as db:
                await set_tenant_context(db, customer_id)
                outcome = await RunTrigger(db, uuid.UUID(customer_id)).trigger(mode)
                return {
                    "status": "success",
                    "customer_id": customer_id,
                    "mode": outcome.mode.value,
                    "suggestions_created": outcome.suggestions_created,
                    "run_id": str(outcome.run_id) if outcome.run_id else None,
                    "message": outcome.message,
                }
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        logger.error("engine_pass.failed", customer_id=customer_id, mode=mode, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    logger.info("engine_pass.completed", **summary)
    return summary
