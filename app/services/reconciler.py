"""
Subscription reconciliation.

Turns a Stripe subscription object into the canonical local subscription row:
- Derives plan name and billing period from the (often partial) Stripe object
- Updates the row in place while the period is unchanged
- Rolls over to a new row when Stripe reports a new billing period
- Applies cancellations coming from Stripe
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.enums import ACTIVE_LIKE_STATUSES, SubscriptionStatus
from app.models.subscription import Subscription
from app.services.customer_resolver import CustomerResolver, user_id_from_metadata
from app.services.stripe_gateway import StripeGateway, object_id

logger = logging.getLogger(__name__)
settings = get_settings()

DEFAULT_PLAN_NAME = "monthly"
MIN_PERIOD = timedelta(days=1)
TIMESTAMP_OFFSET = timedelta(hours=settings.timestamp_offset_hours)


def to_local_datetime(timestamp: Optional[int], offset: timedelta = TIMESTAMP_OFFSET) -> Optional[datetime]:
    """Convert Stripe UTC epoch seconds to the stored (UTC-3) naive timestamp."""
    if not timestamp:
        return None
    shifted = datetime.fromtimestamp(timestamp, tz=timezone.utc) - offset
    return shifted.replace(tzinfo=None)


def local_now(offset: timedelta = TIMESTAMP_OFFSET) -> datetime:
    """Current time as a stored (UTC-3) naive timestamp."""
    return (datetime.now(timezone.utc) - offset).replace(tzinfo=None)


def _first_item(subscription: dict) -> dict:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def derive_plan_name(subscription: dict) -> str:
    """Price nickname, else the recurring interval, else 'monthly'."""
    price = _first_item(subscription).get("price") or {}
    if price.get("nickname"):
        return price["nickname"]
    recurring = price.get("recurring") or {}
    if recurring.get("interval"):
        return recurring["interval"]
    return DEFAULT_PLAN_NAME


def derive_period(
    subscription: dict,
    offset: timedelta = TIMESTAMP_OFFSET,
) -> Tuple[datetime, datetime]:
    """
    Derive the (start_date, end_date) of the current billing period.

    Newer Stripe API versions moved current_period_* from the subscription
    to items.data[0], so both locations are checked. The end date is floored
    at start + 1 day when it is missing or not after the start.
    """
    item = _first_item(subscription)

    start_ts = (
        subscription.get("current_period_start")
        or item.get("current_period_start")
        or subscription.get("start_date")
    )
    start_date = to_local_datetime(start_ts, offset) if start_ts else local_now(offset)

    end_ts = (
        subscription.get("current_period_end")
        or item.get("current_period_end")
        or subscription.get("trial_end")
    )
    end_date = to_local_datetime(end_ts, offset)

    if end_date is None or end_date <= start_date:
        end_date = start_date + MIN_PERIOD

    return start_date, end_date


def derive_period_end(subscription: dict, offset: timedelta = TIMESTAMP_OFFSET) -> Optional[datetime]:
    """Current period end as reported by Stripe, without the safety floor."""
    end_ts = subscription.get("current_period_end") or _first_item(subscription).get("current_period_end")
    return to_local_datetime(end_ts, offset)


class SubscriptionReconciler:
    """Persists Stripe subscription state into the subscriptions table."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        resolver: CustomerResolver,
        offset: timedelta = TIMESTAMP_OFFSET,
    ):
        self.db = db
        self.gateway = gateway
        self.resolver = resolver
        self.offset = offset

    # --- Queries ---

    async def get_current_row(self, user_id: str) -> Optional[Subscription]:
        """Most recent active-like period for a user."""
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(ACTIVE_LIKE_STATUSES),
            )
            .order_by(Subscription.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_period_row(self, stripe_subscription_id: str, start_date: datetime) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id,
                Subscription.start_date == start_date,
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_row(
        self,
        stripe_subscription_id: str,
        status: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Most recent period of a Stripe subscription, optionally by status."""
        query = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        if status:
            query = query.where(Subscription.status == status)
        result = await self.db.execute(
            query.order_by(Subscription.start_date.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    # --- Reconciliation ---

    def _fetch(self, subscription_id: str) -> Optional[dict]:
        try:
            return self.gateway.retrieve_subscription(subscription_id)
        except stripe.StripeError as e:
            logger.warning(f"Error retrieving subscription {subscription_id} from Stripe: {e}")
            return None

    async def _resolve_user_id(self, subscription: dict, user_id: Optional[str]) -> Optional[str]:
        if user_id:
            return user_id
        return (
            user_id_from_metadata(subscription.get("metadata"))
            or await self.resolver.resolve_user_id(object_id(subscription.get("customer")))
        )

    async def reconcile(self, subscription: dict, user_id: Optional[str] = None) -> Optional[Subscription]:
        """
        Reconcile a Stripe subscription into the local table.

        The full object is always re-fetched from Stripe since webhook payloads
        may be stale or partial; on failure the payload is used as-is.

        Returns:
            The persisted row, or None when no local user owns the customer
        """
        full_subscription = self._fetch(subscription["id"]) or subscription
        return await self._apply(full_subscription, user_id)

    async def reconcile_by_id(self, subscription_id: str, user_id: Optional[str] = None) -> Optional[Subscription]:
        """Fetch a subscription from Stripe and reconcile it."""
        full_subscription = self._fetch(subscription_id)
        if full_subscription is None:
            return None
        return await self._apply(full_subscription, user_id)

    async def _apply(self, subscription: dict, user_id: Optional[str]) -> Optional[Subscription]:
        stripe_subscription_id = subscription["id"]

        user_id = await self._resolve_user_id(subscription, user_id)
        if not user_id:
            logger.error(f"Cannot reconcile subscription {stripe_subscription_id}: user_id not found")
            return None

        start_date, end_date = derive_period(subscription, self.offset)
        values = {
            "user_id": user_id,
            "stripe_customer_id": object_id(subscription.get("customer")),
            "stripe_subscription_id": stripe_subscription_id,
            "status": subscription.get("status") or SubscriptionStatus.INCOMPLETE.value,
            "plan_name": derive_plan_name(subscription),
            "start_date": start_date,
            "end_date": end_date,
            "canceled_date": to_local_datetime(subscription.get("canceled_at"), self.offset),
        }

        current = await self.get_current_row(user_id)

        if current is not None:
            same_subscription = current.stripe_subscription_id == stripe_subscription_id
            if same_subscription and current.start_date == start_date:
                self._patch(current, values)
                await self.db.flush()
                logger.info(f"Subscription {stripe_subscription_id} updated in place: status={current.status}")
                return current

            if same_subscription and start_date < current.start_date:
                logger.warning(
                    f"Ignoring stale period for subscription {stripe_subscription_id}: "
                    f"{start_date} is before current period {current.start_date}"
                )
                return current

            if start_date > current.start_date:
                current.status = SubscriptionStatus.COMPLETED.value
                current.end_date = self._closing_boundary(current, start_date)
                await self.db.flush()
                logger.info(
                    f"Period rollover for user {user_id}: closed {current.stripe_subscription_id} "
                    f"period starting {current.start_date}"
                )
            else:
                # Older subscription of the same user: only its own period row changes
                logger.info(
                    f"Subscription {stripe_subscription_id} period {start_date} is not newer than "
                    f"current {current.stripe_subscription_id}, no rollover"
                )

        existing = await self.get_period_row(stripe_subscription_id, start_date)
        if existing is not None:
            self._patch(existing, values)
            await self.db.flush()
            logger.info(f"Subscription {stripe_subscription_id} period {start_date} reused")
            return existing

        row = Subscription(**values)
        self.db.add(row)
        await self.db.flush()
        logger.info(
            f"Subscription {stripe_subscription_id} period inserted: "
            f"user={user_id}, status={row.status}, start={start_date}, end={end_date}"
        )
        return row

    @staticmethod
    def _patch(row: Subscription, values: dict) -> None:
        canceled_date = values["canceled_date"] or row.canceled_date
        for key, value in values.items():
            setattr(row, key, value)
        row.canceled_date = canceled_date

    @staticmethod
    def _closing_boundary(row: Subscription, next_start: datetime) -> datetime:
        """End date for a period closed by a rollover."""
        if row.end_date is None:
            return next_start
        if row.start_date < next_start < row.end_date:
            return next_start
        return row.end_date

    # --- Cancellation ---

    async def cancel(
        self,
        stripe_subscription_id: str,
        user_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> Optional[Subscription]:
        """
        Mark the active period of a Stripe subscription as canceled.

        Access is kept until the current period end when Stripe reports one.
        Returns None when there is no active local row, since a cancellation
        may arrive before the creation was reconciled.
        """
        subscription = self._fetch(stripe_subscription_id) or payload
        if subscription is None:
            return None

        user_id = await self._resolve_user_id(subscription, user_id)
        if not user_id:
            logger.error(f"Cannot cancel subscription {stripe_subscription_id}: user_id not found")
            return None

        canceled_date = to_local_datetime(subscription.get("canceled_at"), self.offset) or local_now(self.offset)
        end_date = derive_period_end(subscription, self.offset) or canceled_date

        row = await self.get_latest_row(stripe_subscription_id, status=SubscriptionStatus.ACTIVE.value)
        if row is None:
            logger.warning(f"No active subscription found with stripe_subscription_id {stripe_subscription_id}")
            return None

        row.status = SubscriptionStatus.CANCELED.value
        row.canceled_date = canceled_date
        row.end_date = end_date
        await self.db.flush()

        logger.info(
            f"Subscription {stripe_subscription_id} canceled: user={row.user_id}, "
            f"canceled_date={canceled_date}, end_date={end_date}"
        )
        return row
