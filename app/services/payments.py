"""
Payment recording from Stripe invoices.

Every invoice event becomes its own payment row: the ledger is insert-only,
so an invoice delivered twice is recorded twice.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import PaymentStatus
from app.models.payment import Payment
from app.services.customer_resolver import CustomerResolver
from app.services.reconciler import TIMESTAMP_OFFSET, local_now, to_local_datetime
from app.services.stripe_gateway import object_id

logger = logging.getLogger(__name__)

INVOICE_STATUS_MAP = {
    "paid": PaymentStatus.COMPLETED,
    "open": PaymentStatus.PENDING,
    "uncollectible": PaymentStatus.FAILED,
    "void": PaymentStatus.FAILED,
}


def classify_invoice_status(status: Optional[str]) -> PaymentStatus:
    """Map a Stripe invoice status to a payment status (default pending)."""
    return INVOICE_STATUS_MAP.get(status, PaymentStatus.PENDING)


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Stripe subscription id of an invoice, across API versions."""
    subscription_id = object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return object_id(details.get("subscription"))


class PaymentRecorder:
    """Inserts payment rows for Stripe invoices."""

    def __init__(self, db: AsyncSession, resolver: CustomerResolver):
        self.db = db
        self.resolver = resolver

    async def record(
        self,
        invoice: dict,
        subscription_id: Optional[uuid.UUID] = None,
    ) -> Optional[Payment]:
        """
        Record a payment for a Stripe invoice.

        Args:
            invoice: Stripe invoice object
            subscription_id: Local subscription row the payment belongs to

        Returns:
            The inserted payment, or None when the customer has no local user
        """
        customer_id = object_id(invoice.get("customer"))
        user_id = await self.resolver.resolve_user_id(customer_id)
        if not user_id:
            logger.error(f"Cannot record payment: user_id not found for customer {customer_id}")
            return None

        amount_paid = invoice.get("amount_paid") or 0
        created = to_local_datetime(invoice.get("created"), TIMESTAMP_OFFSET)

        payment = Payment(
            user_id=user_id,
            subscription_id=subscription_id,
            amount=Decimal(amount_paid) / 100,
            stripe_payment_id=object_id(invoice.get("payment_intent")) or invoice["id"],
            payment_status=classify_invoice_status(invoice.get("status")).value,
            transaction_date=created or local_now(),
        )
        self.db.add(payment)
        await self.db.flush()

        logger.info(
            f"Payment recorded: id={payment.id}, invoice={invoice['id']}, "
            f"amount={payment.amount}, status={payment.payment_status}"
        )
        return payment
