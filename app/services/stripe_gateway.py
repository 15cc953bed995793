"""
Stripe gateway: the single seam between the billing services and the Stripe SDK.

Every call returns plain dicts (or lists of dicts) so the reconciliation code
works the same on API responses, webhook payloads and test fixtures.
"""
import logging
from typing import Any, List, Optional

import stripe

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when a webhook payload cannot be authenticated."""


def object_id(value: Any) -> Optional[str]:
    """Id of a Stripe reference that may be a bare id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def to_dict(obj: Any) -> Any:
    """Convert a StripeObject (or list of them) into plain Python data."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if hasattr(obj, "to_dict"):
        return {key: to_dict(value) for key, value in obj.to_dict().items()}
    if isinstance(obj, list):
        return [to_dict(item) for item in obj]
    return {key: to_dict(value) for key, value in dict(obj).items()}


class StripeGateway:
    """Thin wrapper over the module-level Stripe API."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        mobile_api_version: Optional[str] = None,
    ):
        stripe.api_key = api_key
        self.webhook_secret = webhook_secret
        self.mobile_api_version = mobile_api_version

    # --- Webhooks ---

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook payload and return the event envelope.

        Raises:
            WebhookSignatureError: missing header, missing secret or bad signature
        """
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook signing secret is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise WebhookSignatureError(str(e)) from e

        return to_dict(event)

    # --- Customers ---

    def retrieve_customer(self, customer_id: str) -> dict:
        return to_dict(stripe.Customer.retrieve(customer_id))

    def search_customers(self, query: str, limit: int = 1) -> List[dict]:
        result = stripe.Customer.search(query=query, limit=limit)
        return [to_dict(customer) for customer in result.data]

    def create_customer(self, **params: Any) -> dict:
        return to_dict(stripe.Customer.create(**params))

    def update_customer(self, customer_id: str, **params: Any) -> dict:
        return to_dict(stripe.Customer.modify(customer_id, **params))

    def create_ephemeral_key(self, customer_id: str) -> dict:
        return to_dict(
            stripe.EphemeralKey.create(
                customer=customer_id,
                stripe_version=self.mobile_api_version,
            )
        )

    # --- Subscriptions ---

    def retrieve_subscription(self, subscription_id: str, expand: Optional[List[str]] = None) -> dict:
        if expand:
            return to_dict(stripe.Subscription.retrieve(subscription_id, expand=expand))
        return to_dict(stripe.Subscription.retrieve(subscription_id))

    def list_subscriptions(self, customer_id: str, status: str = "all", limit: int = 1) -> List[dict]:
        result = stripe.Subscription.list(customer=customer_id, status=status, limit=limit)
        return [to_dict(subscription) for subscription in result.data]

    def create_subscription(self, **params: Any) -> dict:
        return to_dict(stripe.Subscription.create(**params))

    def update_subscription(self, subscription_id: str, **params: Any) -> dict:
        return to_dict(stripe.Subscription.modify(subscription_id, **params))

    # --- Intents and invoices ---

    def create_setup_intent(self, **params: Any) -> dict:
        return to_dict(stripe.SetupIntent.create(**params))

    def retrieve_setup_intent(self, setup_intent_id: str) -> dict:
        return to_dict(stripe.SetupIntent.retrieve(setup_intent_id))

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict:
        return to_dict(stripe.PaymentIntent.retrieve(payment_intent_id))

    def retrieve_invoice(self, invoice_id: str, expand: Optional[List[str]] = None) -> dict:
        if expand:
            return to_dict(stripe.Invoice.retrieve(invoice_id, expand=expand))
        return to_dict(stripe.Invoice.retrieve(invoice_id))

    def pay_invoice(self, invoice_id: str, payment_method_id: str) -> dict:
        return to_dict(stripe.Invoice.pay(invoice_id, payment_method=payment_method_id))

    # --- Payment methods ---

    def list_payment_methods(self, customer_id: str, type: str = "card", limit: int = 10) -> List[dict]:
        result = stripe.PaymentMethod.list(customer=customer_id, type=type, limit=limit)
        return [to_dict(method) for method in result.data]

    def retrieve_payment_method(self, payment_method_id: str) -> dict:
        return to_dict(stripe.PaymentMethod.retrieve(payment_method_id))

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict:
        return to_dict(stripe.PaymentMethod.attach(payment_method_id, customer=customer_id))

    def detach_payment_method(self, payment_method_id: str) -> dict:
        return to_dict(stripe.PaymentMethod.detach(payment_method_id))
