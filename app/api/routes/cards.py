"""
Card management routes: pass-throughs to Stripe payment methods.

The Stripe customer is found by the `userId` metadata tag.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, status

from app.api.deps import get_billing_service
from app.api.errors import APIError
from app.schemas.billing import CardListResponse, CardRequest, CardResponse, DefaultCardResponse
from app.services.billing import BillingService, CustomerNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["cards"])


def _card_error(action: str, e: Exception) -> APIError:
    if isinstance(e, ValueError):
        return APIError(status.HTTP_400_BAD_REQUEST, str(e))
    if isinstance(e, CustomerNotFoundError):
        return APIError(status.HTTP_404_NOT_FOUND, str(e))
    logger.error(f"Error trying to {action}: {e}")
    return APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to {action}", str(e))


@router.post("/create-card/{user_id}", response_model=CardResponse)
async def create_card(
    user_id: str,
    data: CardRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Attach a payment method to the user's Stripe customer."""
    try:
        return billing_service.create_card(user_id, data.payment_method_id, data.make_default)
    except (ValueError, CustomerNotFoundError, stripe.StripeError) as e:
        raise _card_error("create card", e)


@router.get("/cards/{user_id}", response_model=CardListResponse)
async def list_cards(
    user_id: str,
    billing_service: BillingService = Depends(get_billing_service),
):
    """List the user's saved cards and the default one."""
    try:
        return billing_service.list_cards(user_id)
    except (CustomerNotFoundError, stripe.StripeError) as e:
        raise _card_error("list cards", e)


@router.post("/cards/default/{user_id}", response_model=DefaultCardResponse)
async def set_default_card(
    user_id: str,
    data: CardRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Make a saved card the customer's default for invoices."""
    try:
        return billing_service.set_default_card(user_id, data.payment_method_id)
    except (ValueError, CustomerNotFoundError, stripe.StripeError) as e:
        raise _card_error("set default card", e)


@router.post("/cards/delete/{user_id}", response_model=CardResponse)
async def delete_card(
    user_id: str,
    data: CardRequest,
    billing_service: BillingService = Depends(get_billing_service),
):
    """Detach a saved card from the customer."""
    try:
        return billing_service.delete_card(user_id, data.payment_method_id)
    except (ValueError, CustomerNotFoundError, stripe.StripeError) as e:
        raise _card_error("delete card", e)
