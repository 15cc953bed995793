# Celery tasks
from app.tasks.celery_app import celery_app
from app.tasks.sync_tasks import sync_stripe_subscriptions

__all__ = [
    "celery_app",
    "sync_stripe_subscriptions",
]
