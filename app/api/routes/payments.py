"""
Payments API routes for Stripe subscription management.

Endpoints:
- POST /payments/create-subscription-session - PaymentSheet session (SetupIntent)
- POST /payments/create-subscription - Create subscription + first PaymentIntent
- GET  /payments/subscription/{customer_id} - Subscription status by Stripe customer
- GET  /payments/subscription/user/{user_id} - Subscription status by local user
- POST /payments/subscription/cancel/{subscription_id} - Cancel at period end
- POST /payments/sync-subscriptions - Catch-up sync with Stripe
"""
import logging

import stripe
from fastapi import APIRouter, Depends, status

from app.api.deps import get_billing_service, get_synchronizer
from app.api.errors import APIError
from app.schemas.billing import (
    CancelSubscriptionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    SubscriptionSessionRequest,
    SubscriptionSessionResponse,
    SubscriptionStatusResponse,
    SyncResponse,
)
from app.services.billing import BillingService, CustomerNotFoundError
from app.services.sync import SubscriptionSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-subscription-session", response_model=SubscriptionSessionResponse)
async def create_subscription_session(
    data: SubscriptionSessionRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Prepare a SetupIntent + PaymentSheet session to save a payment method."""
    try:
        return billing_service.create_subscription_session(
            plan_id=data.plan_id,
            price_id=data.price_id,
            user_id=data.user_id,
            email=data.email,
            user_name=data.user_name,
            metadata=data.metadata,
        )
    except ValueError as e:
        raise APIError(status.HTTP_400_BAD_REQUEST, str(e))
    except stripe.StripeError as e:
        logger.error(f"Error creating subscription session: {e}")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create subscription session", str(e))


@router.post("/create-subscription", response_model=CreateSubscriptionResponse)
async def create_subscription(
    data: CreateSubscriptionRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Create the Stripe subscription and prepare the first invoice's PaymentIntent."""
    try:
        return billing_service.create_subscription(
            customer_id=data.customer_id,
            plan_id=data.plan_id,
            price_id=data.price_id,
            user_id=data.user_id,
            email=data.email,
            setup_intent_id=data.setup_intent_id,
            metadata=data.metadata,
        )
    except ValueError as e:
        raise APIError(status.HTTP_400_BAD_REQUEST, str(e))
    except stripe.StripeError as e:
        logger.error(f"Error creating subscription: {e}")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create subscription", str(e))


@router.get(
    "/subscription/user/{user_id}",
    response_model=SubscriptionStatusResponse,
    response_model_exclude_none=True,
)
async def get_subscription_status_by_user(
    user_id: str,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Subscription status of the Stripe customer tagged with a local user id."""
    try:
        return billing_service.get_subscription_status_for_user(user_id)
    except CustomerNotFoundError as e:
        raise APIError(status.HTTP_404_NOT_FOUND, str(e))
    except stripe.StripeError as e:
        logger.error(f"Error getting subscription status for user {user_id}: {e}")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get subscription status", str(e))


@router.get(
    "/subscription/{customer_id}",
    response_model=SubscriptionStatusResponse,
    response_model_exclude_none=True,
)
async def get_subscription_status(
    customer_id: str,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Subscription status of a Stripe customer."""
    try:
        return billing_service.get_subscription_status(customer_id)
    except stripe.StripeError as e:
        logger.error(f"Error getting subscription status for {customer_id}: {e}")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get subscription status", str(e))


@router.post("/subscription/cancel/{subscription_id}", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Cancel a subscription at the end of its billing period."""
    try:
        return billing_service.cancel_at_period_end(subscription_id)
    except stripe.StripeError as e:
        logger.error(f"Error cancelling subscription {subscription_id}: {e}")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to cancel subscription", str(e))


@router.post("/sync-subscriptions", response_model=SyncResponse)
async def sync_subscriptions(
    synchronizer: SubscriptionSynchronizer = Depends(get_synchronizer),
):
    """Re-pull active subscriptions from Stripe and correct drifted rows."""
    summary = await synchronizer.run()
    return SyncResponse(message="Subscription sync completed", **summary.to_dict())
