"""Tests for subscription reconciliation."""
from datetime import datetime, timedelta, timezone

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import SubscriptionStatus
from app.models.subscription import Subscription
from app.services.reconciler import (
    derive_period,
    derive_plan_name,
    to_local_datetime,
)
from conftest import (
    LOCAL_PERIOD_1_END,
    LOCAL_PERIOD_1_START,
    LOCAL_PERIOD_2_END,
    PERIOD_1_END,
    PERIOD_1_START,
    PERIOD_2_END,
    make_stripe_subscription,
)


async def all_rows(db: AsyncSession) -> list[Subscription]:
    result = await db.execute(select(Subscription).order_by(Subscription.start_date))
    return list(result.scalars().all())


class TestDerivePeriod:
    """Tests for billing period derivation."""

    def test_offset_applied(self):
        assert to_local_datetime(PERIOD_1_START) == LOCAL_PERIOD_1_START
        assert to_local_datetime(None) is None

    def test_subscription_level_fields(self):
        start, end = derive_period(make_stripe_subscription())
        assert start == LOCAL_PERIOD_1_START
        assert end == LOCAL_PERIOD_1_END

    def test_item_level_fields(self):
        subscription = make_stripe_subscription(start=None, end=None)
        subscription["items"]["data"][0].update(
            current_period_start=PERIOD_1_START,
            current_period_end=PERIOD_1_END,
        )
        start, end = derive_period(subscription)
        assert start == LOCAL_PERIOD_1_START
        assert end == LOCAL_PERIOD_1_END

    def test_missing_end_floored_to_one_day(self):
        start, end = derive_period(make_stripe_subscription(end=None))
        assert end == start + timedelta(days=1)

    def test_end_not_after_start_floored(self):
        start, end = derive_period(make_stripe_subscription(end=PERIOD_1_START))
        assert end == LOCAL_PERIOD_1_START + timedelta(days=1)

    def test_trial_end_used_as_end(self):
        subscription = make_stripe_subscription(end=None, trial_end=PERIOD_1_END)
        _, end = derive_period(subscription)
        assert end == LOCAL_PERIOD_1_END

    def test_start_date_fallback(self):
        subscription = make_stripe_subscription(start=None, end=None, start_date=PERIOD_1_START)
        start, end = derive_period(subscription)
        assert start == LOCAL_PERIOD_1_START
        assert end == LOCAL_PERIOD_1_START + timedelta(days=1)

    def test_no_timestamps_uses_now(self):
        before = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=3, seconds=1)
        start, end = derive_period(make_stripe_subscription(start=None, end=None))
        after = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=3) + timedelta(seconds=1)
        assert before <= start <= after
        assert end == start + timedelta(days=1)


class TestDerivePlanName:
    """Tests for plan name derivation."""

    def test_nickname_wins(self):
        subscription = make_stripe_subscription()
        subscription["items"]["data"][0]["price"] = {
            "nickname": "Pro",
            "recurring": {"interval": "year"},
        }
        assert derive_plan_name(subscription) == "Pro"

    def test_interval_fallback(self):
        subscription = make_stripe_subscription()
        subscription["items"]["data"][0]["price"] = {"nickname": None, "recurring": {"interval": "year"}}
        assert derive_plan_name(subscription) == "year"

    def test_default_monthly(self):
        assert derive_plan_name(make_stripe_subscription()) == "monthly"
        assert derive_plan_name({"id": "sub_1"}) == "monthly"


class TestReconcile:
    """Tests for SubscriptionReconciler.reconcile."""

    async def test_creates_row_for_new_subscription(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription()
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription)
        await db_session.commit()

        assert row is not None
        assert row.user_id == "u1"
        assert row.stripe_customer_id == "cus_1"
        assert row.stripe_subscription_id == "sub_1"
        assert row.status == "active"
        assert row.plan_name == "monthly"
        assert row.start_date == LOCAL_PERIOD_1_START
        assert row.end_date == LOCAL_PERIOD_1_END
        assert row.canceled_date is None
        gateway.retrieve_subscription.assert_called_once_with("sub_1")

    async def test_refetched_object_wins_over_payload(self, reconciler, gateway, db_session):
        gateway.retrieve_subscription.return_value = make_stripe_subscription(status="past_due")

        row = await reconciler.reconcile(make_stripe_subscription(status="incomplete"))

        assert row.status == "past_due"

    async def test_refetch_failure_uses_payload(self, reconciler, gateway, db_session):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("Stripe is down")

        row = await reconciler.reconcile(make_stripe_subscription(status="trialing"))

        assert row is not None
        assert row.status == "trialing"
        assert row.start_date == LOCAL_PERIOD_1_START

    async def test_idempotent(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription()
        gateway.retrieve_subscription.return_value = subscription

        first = await reconciler.reconcile(subscription)
        await db_session.commit()
        second = await reconciler.reconcile(subscription)
        await db_session.commit()

        rows = await all_rows(db_session)
        assert len(rows) == 1
        assert first.id == second.id

    async def test_same_period_updated_in_place(self, reconciler, gateway, db_session, active_subscription):
        subscription = make_stripe_subscription(status="past_due")
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription)
        await db_session.commit()

        assert row.id == active_subscription.id
        assert row.status == "past_due"
        assert len(await all_rows(db_session)) == 1

    async def test_new_period_rolls_over(self, reconciler, gateway, db_session, active_subscription):
        renewed = make_stripe_subscription(start=PERIOD_1_END, end=PERIOD_2_END)
        gateway.retrieve_subscription.return_value = renewed

        row = await reconciler.reconcile(renewed)
        await db_session.commit()

        rows = await all_rows(db_session)
        assert len(rows) == 2
        old, new = rows
        assert old.id == active_subscription.id
        assert old.status == SubscriptionStatus.COMPLETED.value
        assert old.end_date == LOCAL_PERIOD_1_END
        assert new.id == row.id
        assert new.status == "active"
        assert new.start_date == LOCAL_PERIOD_1_END
        assert new.end_date == LOCAL_PERIOD_2_END

    async def test_rollover_closes_other_subscription_of_user(
        self, reconciler, gateway, db_session, active_subscription
    ):
        other = make_stripe_subscription(sub_id="sub_2", start=PERIOD_1_END, end=PERIOD_2_END)
        gateway.retrieve_subscription.return_value = other

        await reconciler.reconcile(other)
        await db_session.commit()

        await db_session.refresh(active_subscription)
        assert active_subscription.status == SubscriptionStatus.COMPLETED.value
        current = await reconciler.get_current_row("u1")
        assert current.stripe_subscription_id == "sub_2"

    async def test_rollover_mid_period_closes_at_new_start(
        self, reconciler, gateway, db_session, active_subscription
    ):
        upgraded_at = PERIOD_1_START + 7 * 24 * 3600
        upgrade = make_stripe_subscription(sub_id="sub_2", start=upgraded_at, end=PERIOD_2_END)
        gateway.retrieve_subscription.return_value = upgrade

        await reconciler.reconcile(upgrade)
        await db_session.commit()

        await db_session.refresh(active_subscription)
        assert active_subscription.end_date == to_local_datetime(upgraded_at)

    async def test_stale_period_ignored(self, reconciler, gateway, db_session):
        renewed = make_stripe_subscription(start=PERIOD_1_END, end=PERIOD_2_END)
        gateway.retrieve_subscription.return_value = renewed
        current = await reconciler.reconcile(renewed)
        await db_session.commit()

        stale = make_stripe_subscription()
        gateway.retrieve_subscription.side_effect = stripe.StripeError("timeout")
        row = await reconciler.reconcile(stale)
        await db_session.commit()

        assert row.id == current.id
        rows = await all_rows(db_session)
        assert len(rows) == 1
        assert rows[0].start_date == LOCAL_PERIOD_1_END

    async def test_expired_older_subscription_keeps_newer_active(self, reconciler, gateway, db_session):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("timeout")
        abandoned = make_stripe_subscription(sub_id="sub_old", status="incomplete")
        paid = make_stripe_subscription(sub_id="sub_new", start=PERIOD_1_START + 3600)

        await reconciler.reconcile(abandoned)
        await db_session.commit()
        await reconciler.reconcile(paid)
        await db_session.commit()
        expired = await reconciler.reconcile(
            make_stripe_subscription(sub_id="sub_old", status="incomplete_expired")
        )
        await db_session.commit()

        statuses = {row.stripe_subscription_id: row.status for row in await all_rows(db_session)}
        assert statuses == {"sub_old": "incomplete_expired", "sub_new": "active"}
        assert expired.stripe_subscription_id == "sub_old"
        current = await reconciler.get_current_row("u1")
        assert current.stripe_subscription_id == "sub_new"

    async def test_older_subscription_update_inserts_own_period(
        self, reconciler, gateway, db_session, active_subscription
    ):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("timeout")
        older = make_stripe_subscription(
            sub_id="sub_0",
            status="incomplete_expired",
            start=PERIOD_1_START - 24 * 3600,
        )

        row = await reconciler.reconcile(older)
        await db_session.commit()

        assert row.stripe_subscription_id == "sub_0"
        await db_session.refresh(active_subscription)
        assert active_subscription.status == SubscriptionStatus.ACTIVE.value
        assert len(await all_rows(db_session)) == 2

    async def test_canceled_at_recorded(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription(canceled_at=PERIOD_1_END)
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription)

        assert row.canceled_date == LOCAL_PERIOD_1_END

    async def test_user_id_from_subscription_metadata(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription(metadata={"userId": "u42"})
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription)

        assert row.user_id == "u42"
        gateway.retrieve_customer.assert_not_called()

    async def test_explicit_user_id(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription()
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription, user_id="u7")

        assert row.user_id == "u7"

    async def test_unresolvable_user_writes_nothing(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription()
        gateway.retrieve_subscription.return_value = subscription
        gateway.retrieve_customer.return_value = {"id": "cus_1", "metadata": {}}

        row = await reconciler.reconcile(subscription)
        await db_session.commit()

        assert row is None
        assert await all_rows(db_session) == []

    async def test_expanded_customer_object(self, reconciler, gateway, db_session):
        subscription = make_stripe_subscription(customer={"id": "cus_1", "object": "customer"})
        gateway.retrieve_subscription.return_value = subscription

        row = await reconciler.reconcile(subscription)

        assert row.stripe_customer_id == "cus_1"

    async def test_reconcile_by_id_fetch_failure(self, reconciler, gateway, db_session):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("gone")

        assert await reconciler.reconcile_by_id("sub_1") is None
        assert await all_rows(db_session) == []


class TestCancel:
    """Tests for SubscriptionReconciler.cancel."""

    async def test_cancel_active_row(self, reconciler, gateway, db_session, active_subscription):
        gateway.retrieve_subscription.return_value = make_stripe_subscription(
            status="canceled",
            canceled_at=PERIOD_1_START + 3600,
        )

        row = await reconciler.cancel("sub_1")
        await db_session.commit()

        assert row.id == active_subscription.id
        assert row.status == SubscriptionStatus.CANCELED.value
        assert row.canceled_date == to_local_datetime(PERIOD_1_START + 3600)
        assert row.end_date == LOCAL_PERIOD_1_END

    async def test_cancel_without_period_end(self, reconciler, gateway, db_session, active_subscription):
        gateway.retrieve_subscription.return_value = make_stripe_subscription(
            status="canceled",
            end=None,
            canceled_at=PERIOD_1_START + 3600,
        )

        row = await reconciler.cancel("sub_1")

        assert row.end_date == row.canceled_date

    async def test_cancel_without_active_row(self, reconciler, gateway, db_session):
        gateway.retrieve_subscription.return_value = make_stripe_subscription(status="canceled")

        assert await reconciler.cancel("sub_1") is None
        assert await all_rows(db_session) == []

    async def test_cancel_uses_payload_when_fetch_fails(
        self, reconciler, gateway, db_session, active_subscription
    ):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("deleted")
        payload = make_stripe_subscription(status="canceled", canceled_at=PERIOD_1_END)

        row = await reconciler.cancel("sub_1", payload=payload)

        assert row.status == SubscriptionStatus.CANCELED.value
        assert row.canceled_date == LOCAL_PERIOD_1_END

    async def test_cancel_nothing_to_go_on(self, reconciler, gateway, db_session, active_subscription):
        gateway.retrieve_subscription.side_effect = stripe.StripeError("deleted")

        assert await reconciler.cancel("sub_1") is None
        await db_session.refresh(active_subscription)
        assert active_subscription.status == SubscriptionStatus.ACTIVE.value

    async def test_cancel_leaves_completed_periods(self, reconciler, gateway, db_session, active_subscription):
        renewed = make_stripe_subscription(start=PERIOD_1_END, end=PERIOD_2_END)
        gateway.retrieve_subscription.return_value = renewed
        current = await reconciler.reconcile(renewed)
        await db_session.commit()

        gateway.retrieve_subscription.return_value = make_stripe_subscription(
            status="canceled",
            start=PERIOD_1_END,
            end=PERIOD_2_END,
            canceled_at=PERIOD_1_END + 3600,
        )
        row = await reconciler.cancel("sub_1")
        await db_session.commit()

        assert row.id == current.id
        await db_session.refresh(active_subscription)
        assert active_subscription.status == SubscriptionStatus.COMPLETED.value
