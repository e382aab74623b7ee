"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "rebalanceops",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.rebalance.*": {"queue": "engine"},
        "workers.scheduler.*": {"queue": "scheduler"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Tenant-scoped jobs fan out via workers.scheduler.dispatch_active_tenants.
    beat_schedule={
        "recalc-store-tiers-weekly": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=1, minute=0, day_of_week="monday"),
            "kwargs": {
                "task_name": "workers.rebalance.run_engine_pass",
                "task_kwargs": {"mode": "tiers"},
            },
            "options": {"queue": "scheduler"},
        },
        "recall-scan-nightly": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=2, minute=0),
            "kwargs": {"task_name": "workers.rebalance.run_recall_scan"},
            "options": {"queue": "scheduler"},
        },
        "rebalance-pass-nightly": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(hour=2, minute=30),  # After the recall scan
            "kwargs": {
                "task_name": "workers.rebalance.run_engine_pass",
                "task_kwargs": {"mode": "rebalance"},
            },
            "options": {"queue": "scheduler"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
