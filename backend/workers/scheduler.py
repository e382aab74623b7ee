"""Tenant fan-out for Celery beat: one task per active customer."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

DEFAULT_ACTIVE_STATUSES = ("active", "trial")
DISPATCHABLE_PREFIX = "workers.rebalance."


@celery_app.task(
    name="workers.scheduler.dispatch_active_tenants",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_tenants(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    statuses: list[str] | None = None,
):
    """
    Send ``task_name`` once per customer whose status is in ``statuses``.

    Only rebalance tasks can be fanned out; anything else is refused
    without touching the database.
    """
    from core.config import get_settings
    from db.models import Customer

    if not task_name.startswith(DISPATCHABLE_PREFIX):
        logger.warning("scheduler.task_refused", task_name=task_name)
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    dispatch_id = self.request.id or "manual"
    wanted = tuple(statuses or DEFAULT_ACTIVE_STATUSES)
    base_kwargs = dict(task_kwargs or {})

    async def _customer_ids() -> list[str]:
        engine = create_async_engine(get_settings().database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession)
            async with session_factory() as db:
                result = await db.execute(
                    select(Customer.customer_id).where(Customer.status.in_(wanted)).order_by(Customer.created_at)
                )
                return [str(customer_id) for customer_id in result.scalars().all()]
        finally:
            await engine.dispose()

    try:
        customer_ids = asyncio.run(_customer_ids())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    for customer_id in customer_ids:
        celery_app.send_task(task_name, kwargs={**base_kwargs, "customer_id": customer_id})

    summary = {
        "status": "success",
        "task_name": task_name,
        "customer_count": len(customer_ids),
        "dispatched_count": len(customer_ids),
        "statuses": list(wanted),
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "dispatch_id": dispatch_id,
    }
    logger.info("scheduler.dispatch_complete", **summary)
    return summary
