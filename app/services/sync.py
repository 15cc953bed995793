"""
Catch-up synchronization of local subscriptions with Stripe.

Backstop for missed or failed webhook deliveries: every active-like row is
compared with its Stripe subscription and re-reconciled when it drifted.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ACTIVE_LIKE_STATUSES
from app.models.subscription import Subscription
from app.services.reconciler import SubscriptionReconciler, derive_period
from app.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Outcome of a catch-up sync run."""
    updated: int = 0
    errors: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class SubscriptionSynchronizer:
    """Re-pulls active-like subscriptions from Stripe and corrects drift."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        reconciler: SubscriptionReconciler,
    ):
        self.db = db
        self.gateway = gateway
        self.reconciler = reconciler

    @staticmethod
    def _changed(snapshot, reconciled: Optional[Subscription]) -> bool:
        """Whether reconciliation persisted something other than the snapshot row as it was."""
        if reconciled is None:
            return False
        if reconciled.id != snapshot.id:
            return True
        return (reconciled.status, reconciled.end_date) != (snapshot.status, snapshot.end_date)

    async def run(self) -> SyncSummary:
        result = await self.db.execute(
            select(
                Subscription.id,
                Subscription.user_id,
                Subscription.stripe_subscription_id,
                Subscription.status,
                Subscription.end_date,
            )
            .where(Subscription.status.in_(ACTIVE_LIKE_STATUSES))
            .order_by(Subscription.start_date)
        )
        rows = result.all()

        summary = SyncSummary(total=len(rows))
        logger.info(f"Starting subscription sync: {summary.total} active subscriptions")

        for row in rows:
            try:
                subscription = self.gateway.retrieve_subscription(row.stripe_subscription_id)
                _, end_date = derive_period(subscription, self.reconciler.offset)

                if end_date == row.end_date and subscription.get("status") == row.status:
                    continue

                logger.info(
                    f"Subscription {row.stripe_subscription_id} drifted: "
                    f"status {row.status} -> {subscription.get('status')}, "
                    f"end_date {row.end_date} -> {end_date}"
                )
                reconciled = await self.reconciler.reconcile(subscription, user_id=row.user_id)
                await self.db.commit()
                if self._changed(row, reconciled):
                    summary.updated += 1
                else:
                    logger.info(f"Subscription {row.stripe_subscription_id} left unchanged by reconciliation")
            except Exception:
                logger.exception(f"Failed to sync subscription {row.stripe_subscription_id}")
                await self.db.rollback()
                summary.errors += 1

        logger.info(
            f"Subscription sync finished: updated={summary.updated}, "
            f"errors={summary.errors}, total={summary.total}"
        )
        return summary
