"""
Celery Application Configuration
"""

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stockguard",
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
        "workers.evaluation.*": {"queue": "evaluation"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Alternative to the long-running monitor: one evaluation per tick.
    beat_schedule={
        "evaluate-stock": {
            "task": "workers.evaluation.run_stock_evaluation",
            "schedule": settings.evaluation_interval_seconds,
            "options": {"queue": "evaluation", "expires": settings.evaluation_interval_seconds},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
