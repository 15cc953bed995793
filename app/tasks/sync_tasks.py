"""
Celery task for the periodic subscription catch-up sync.
"""
import asyncio
import logging

from app.config import get_settings
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
settings = get_settings()


def get_async_session_for_celery():
    """Create an async session factory (and its engine) for one task run."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    return session_maker, engine


def run_async(coro):
    """Run async coroutine in sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _sync_subscriptions() -> dict:
    from app.api.deps import get_stripe_gateway
    from app.services.customer_resolver import CustomerResolver
    from app.services.reconciler import SubscriptionReconciler
    from app.services.sync import SubscriptionSynchronizer

    session_maker, engine = get_async_session_for_celery()
    gateway = get_stripe_gateway()
    try:
        async with session_maker() as db:
            reconciler = SubscriptionReconciler(db, gateway, CustomerResolver(db, gateway))
            summary = await SubscriptionSynchronizer(db, gateway, reconciler).run()
    finally:
        await engine.dispose()

    return summary.to_dict()


@celery_app.task(
    bind=True,
    name="app.tasks.sync_tasks.sync_stripe_subscriptions",
    max_retries=3,
    default_retry_delay=300,
)
def sync_stripe_subscriptions(self) -> dict:
    """
    Periodic catch-up sync of active subscriptions with Stripe.

    Per-subscription failures are counted in the summary; only a failure of
    the whole run (e.g. the database is unreachable) is retried.

    Returns:
        Dict with updated, errors and total counts
    """
    logger.info("Starting scheduled subscription sync")
    try:
        result = run_async(_sync_subscriptions())
    except Exception as e:
        logger.error(f"Subscription sync failed: {e}")
        raise self.retry(exc=e)

    logger.info(f"Scheduled subscription sync done: {result}")
    return result
