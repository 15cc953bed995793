"""
Celery application configuration.

Includes:
- Celery app setup with Redis broker
- Task configuration
- Beat schedule for the periodic subscription catch-up sync
"""
from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stripe_billing",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.tasks.sync_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    worker_prefetch_multiplier=1,
    result_expires=3600,  # 1 hour
)

celery_app.conf.beat_schedule = {
    "sync-stripe-subscriptions": {
        "task": "app.tasks.sync_tasks.sync_stripe_subscriptions",
        "schedule": settings.subscription_sync_interval_minutes * 60.0,
        "options": {"queue": "default"},
    },
}

celery_app.conf.task_default_queue = "default"
