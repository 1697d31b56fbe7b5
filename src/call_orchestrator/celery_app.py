"""Celery worker and beat for periodic call orchestration work.

Run the worker with ``celery -A call_orchestrator.celery_app worker`` and the
scheduler with ``celery -A call_orchestrator.celery_app beat``.
"""

from datetime import timedelta

from celery import Celery

from call_orchestrator.config import get_settings

settings = get_settings()

app = Celery(
    "call_orchestrator",
    broker=settings.redis.url,
    include=["call_orchestrator.tasks.scheduling"],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=max(settings.dispatch.scheduler_interval_seconds * 4, 60),
    beat_schedule={
        "release-scheduled-calls": {
            "task": "call_orchestrator.tasks.scheduling.release_scheduled_calls",
            "schedule": timedelta(seconds=settings.dispatch.scheduler_interval_seconds),
            "options": {"expires": settings.dispatch.scheduler_interval_seconds},
        },
    },
)
