"""
Stripe webhook dispatch.

Verified events are routed by type to the reconciler or the payment recorder.
Handler failures are logged and rolled back, never surfaced to Stripe: the
catch-up sync corrects whatever a failed delivery left behind.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import Payment
from app.services.payments import PaymentRecorder, invoice_subscription_id
from app.services.reconciler import SubscriptionReconciler
from app.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Awaitable[None]]


class WebhookDispatcher:
    """Verifies Stripe webhook payloads and dispatches them by event type."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        reconciler: SubscriptionReconciler,
        recorder: PaymentRecorder,
    ):
        self.db = db
        self.gateway = gateway
        self.reconciler = reconciler
        self.recorder = recorder
        self.handlers: Dict[str, EventHandler] = {
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    def verify(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Authenticate a webhook payload.

        Raises:
            WebhookSignatureError: If the signature cannot be verified
        """
        return self.gateway.construct_event(payload, signature)

    async def dispatch(self, event: dict) -> bool:
        """
        Run the handler for a verified event.

        Returns:
            True when the event was handled and committed, False when it was
            ignored or its handler failed
        """
        event_type = event.get("type")
        logger.info(f"Received Stripe event {event.get('id')}: {event_type}")

        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event: {event_type}")
            return False

        try:
            await handler(event["data"]["object"])
            await self.db.commit()
        except Exception:
            logger.exception(f"Failed to process webhook event {event.get('id')} ({event_type})")
            await self.db.rollback()
            return False

        return True

    # --- Handlers ---

    async def _handle_subscription_changed(self, subscription: dict) -> None:
        await self.reconciler.reconcile(subscription)

    async def _handle_subscription_deleted(self, subscription: dict) -> None:
        await self.reconciler.cancel(subscription["id"], payload=subscription)

    async def _record_invoice(self, invoice: dict) -> Optional[Payment]:
        subscription_id = invoice_subscription_id(invoice)
        row = None
        if subscription_id:
            row = await self.reconciler.get_latest_row(subscription_id)
        return await self.recorder.record(invoice, row.id if row else None)

    async def _handle_payment_succeeded(self, invoice: dict) -> None:
        payment = await self._record_invoice(invoice)

        # Keep local status and period in sync with the renewal
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return
        row = await self.reconciler.reconcile_by_id(subscription_id)

        # A renewal paid before its subscription update belongs to the new period
        if (
            payment is not None
            and row is not None
            and row.stripe_subscription_id == subscription_id
            and payment.subscription_id != row.id
        ):
            payment.subscription_id = row.id
            await self.db.flush()
            logger.info(f"Payment {payment.id} linked to period starting {row.start_date}")

    async def _handle_payment_failed(self, invoice: dict) -> None:
        await self._record_invoice(invoice)
