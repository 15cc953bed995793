"""
Stripe webhook endpoint.

No authentication: requests are authenticated by the Stripe signature.
Every verified event is acknowledged, whatever the outcome of its handler.
"""
import logging

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_webhook_dispatcher
from app.api.errors import APIError
from app.schemas.billing import WebhookResponse
from app.services.stripe_gateway import WebhookSignatureError
from app.services.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["webhook"])


@router.post("/webhook", response_model=WebhookResponse, include_in_schema=False)
async def stripe_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = dispatcher.verify(payload, signature)
    except WebhookSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise APIError(status.HTTP_400_BAD_REQUEST, "Webhook Error", str(e))

    await dispatcher.dispatch(event)
    return WebhookResponse(received=True)
