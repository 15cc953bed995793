"""
Billing service for the client-facing Stripe operations.

Handles:
- Payment sheet sessions (customer, ephemeral key, SetupIntent)
- Subscription creation and first-invoice payment intent
- Subscription status lookups
- Cancel at period end
- Card management pass-throughs
"""
import logging
from typing import Dict, List, Optional

import stripe

from app.services.customer_resolver import CustomerResolver, build_customer_metadata
from app.services.stripe_gateway import StripeGateway, object_id

logger = logging.getLogger(__name__)

REQUIRES_ACTION_STATUSES = ("requires_action", "requires_payment_method")


class CustomerNotFoundError(LookupError):
    """No Stripe customer is tagged with the requested user id."""


def resolve_price_id(price_ids: Dict[str, str], plan_id: Optional[str], price_id: Optional[str]) -> str:
    """
    Pick the Stripe price for a request.

    Raises:
        ValueError: If neither id is given or the plan has no configured price
    """
    if price_id:
        return price_id
    if not plan_id:
        raise ValueError("planId or priceId is required")
    resolved = price_ids.get(plan_id)
    if not resolved:
        raise ValueError(f"Price ID not configured for plan '{plan_id}'")
    return resolved


class BillingService:
    """Client-facing Stripe operations."""

    def __init__(self, gateway: StripeGateway, resolver: CustomerResolver, price_ids: Dict[str, str]):
        self.gateway = gateway
        self.resolver = resolver
        self.price_ids = price_ids

    # --- Subscriptions ---

    def create_subscription_session(
        self,
        plan_id: Optional[str],
        price_id: Optional[str],
        user_id: Optional[str],
        email: Optional[str],
        user_name: Optional[str],
        metadata: Optional[dict] = None,
    ) -> dict:
        """Prepare a SetupIntent + PaymentSheet session to save a payment method."""
        price_id = resolve_price_id(self.price_ids, plan_id, price_id)

        customer = self.resolver.get_or_create_customer(user_id, email=email, user_name=user_name)
        ephemeral_key = self.gateway.create_ephemeral_key(customer["id"])
        setup_intent = self.gateway.create_setup_intent(
            customer=customer["id"],
            automatic_payment_methods={"enabled": True},
            metadata=build_customer_metadata(user_id, planId=plan_id, **(metadata or {})),
        )

        return {
            "customer_id": customer["id"],
            "customer_email": customer.get("email"),
            "customer_ephemeral_key_secret": ephemeral_key["secret"],
            "setup_intent_client_secret": setup_intent["client_secret"],
            "price_id": price_id,
            "plan_id": plan_id,
        }

    def create_subscription(
        self,
        customer_id: Optional[str],
        plan_id: Optional[str],
        price_id: Optional[str],
        user_id: Optional[str],
        email: Optional[str],
        setup_intent_id: Optional[str],
        metadata: Optional[dict] = None,
    ) -> dict:
        """
        Create the Stripe subscription and prepare the first invoice's PaymentIntent.

        Secondary steps (default payment method, intent expansion, auto-pay)
        are best effort: failures are logged and the flow continues.
        """
        if not customer_id:
            raise ValueError("customerId is required")
        price_id = resolve_price_id(self.price_ids, plan_id, price_id)

        customer = self.resolver.ensure_customer_metadata(
            self.gateway.retrieve_customer(customer_id),
            email=email,
            user_id=user_id,
        )
        ephemeral_key = self.gateway.create_ephemeral_key(customer["id"])

        default_payment_method_id = self._default_payment_method(customer["id"], setup_intent_id)

        params = {
            "customer": customer["id"],
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "collection_method": "charge_automatically",
            "payment_settings": {
                "save_default_payment_method": "on_subscription",
                "payment_method_types": ["card"],
            },
            "expand": ["latest_invoice.payment_intent"],
            "metadata": build_customer_metadata(user_id, planId=plan_id, **(metadata or {})),
        }
        if default_payment_method_id:
            params["default_payment_method"] = default_payment_method_id

        subscription = self.gateway.create_subscription(**params)
        logger.info(f"Created Stripe subscription {subscription['id']} for customer {customer['id']}")

        latest_invoice = subscription.get("latest_invoice")
        latest_invoice_id = object_id(latest_invoice)
        payment_intent = self._expand_payment_intent(
            latest_invoice.get("payment_intent") if isinstance(latest_invoice, dict) else None
        )

        if not (payment_intent and payment_intent.get("client_secret")) and latest_invoice_id:
            try:
                invoice = self.gateway.retrieve_invoice(latest_invoice_id, expand=["payment_intent"])
                payment_intent = self._expand_payment_intent(invoice.get("payment_intent")) or payment_intent
            except stripe.StripeError as e:
                logger.warning(f"Unable to retrieve subscription latest invoice: {e}")

        invoice_payment_status = None
        if payment_intent is None and latest_invoice_id and default_payment_method_id:
            try:
                paid_invoice = self.gateway.pay_invoice(latest_invoice_id, default_payment_method_id)
                invoice_payment_status = paid_invoice.get("status")
                payment_intent = self._expand_payment_intent(paid_invoice.get("payment_intent"))
            except stripe.StripeError as e:
                logger.warning(f"Unable to auto-pay invoice {latest_invoice_id}: {e}")

        subscription = self.gateway.retrieve_subscription(
            subscription["id"],
            expand=["latest_invoice.payment_intent"],
        )
        latest_invoice = subscription.get("latest_invoice")
        if payment_intent is None and isinstance(latest_invoice, dict):
            payment_intent = self._expand_payment_intent(latest_invoice.get("payment_intent"))

        payment_intent_status = payment_intent.get("status") if payment_intent else None
        invoice_status = invoice_payment_status or (
            latest_invoice.get("status") if isinstance(latest_invoice, dict) else None
        )

        return {
            "subscription_id": subscription["id"],
            "subscription_status": subscription.get("status"),
            "customer_id": customer["id"],
            "plan_id": plan_id,
            "price_id": price_id,
            "latest_invoice_id": latest_invoice_id,
            "payment_intent_id": payment_intent.get("id") if payment_intent else None,
            "payment_intent_status": payment_intent_status,
            "payment_intent_client_secret": payment_intent.get("client_secret") if payment_intent else None,
            "requires_action": payment_intent_status in REQUIRES_ACTION_STATUSES,
            "customer_ephemeral_key_secret": ephemeral_key["secret"],
            "invoice_status": invoice_status,
        }

    def _default_payment_method(self, customer_id: str, setup_intent_id: Optional[str]) -> Optional[str]:
        """Payment method from the SetupIntent, else the first card on file, set as invoice default."""
        payment_method_id = None

        if setup_intent_id:
            try:
                setup_intent = self.gateway.retrieve_setup_intent(setup_intent_id)
                payment_method_id = object_id(setup_intent.get("payment_method"))
            except stripe.StripeError as e:
                logger.warning(f"Unable to retrieve setup intent for default payment method: {e}")

        if not payment_method_id:
            try:
                methods = self.gateway.list_payment_methods(customer_id, type="card", limit=1)
                payment_method_id = methods[0]["id"] if methods else None
            except stripe.StripeError as e:
                logger.warning(f"Unable to list customer payment methods: {e}")

        if payment_method_id:
            try:
                self.gateway.update_customer(
                    customer_id,
                    invoice_settings={"default_payment_method": payment_method_id},
                )
            except stripe.StripeError as e:
                logger.warning(f"Unable to set default payment method on customer: {e}")

        return payment_method_id

    def _expand_payment_intent(self, payment_intent) -> Optional[dict]:
        """Return the PaymentIntent object for an id or an already expanded intent."""
        if not payment_intent:
            return None
        if isinstance(payment_intent, dict):
            return payment_intent
        try:
            return self.gateway.retrieve_payment_intent(payment_intent)
        except stripe.StripeError as e:
            logger.warning(f"Unable to expand payment intent {payment_intent}: {e}")
            return None

    def get_subscription_status(self, customer_id: str) -> dict:
        """Latest subscription of a Stripe customer."""
        subscriptions = self.gateway.list_subscriptions(customer_id, status="all", limit=1)
        if not subscriptions:
            return {"has_subscription": False, "message": "No active subscription found"}

        subscription = subscriptions[0]
        return {
            "has_subscription": True,
            "status": subscription.get("status"),
            "current_period_end": subscription.get("current_period_end"),
            "cancel_at_period_end": subscription.get("cancel_at_period_end", False),
            "subscription": subscription,
        }

    def get_subscription_status_for_user(self, user_id: str) -> dict:
        """
        Latest subscription of the Stripe customer tagged with a user id.

        Raises:
            CustomerNotFoundError: If no customer carries this user id
        """
        customer = self._customer_for_user(user_id)
        status = self.get_subscription_status(customer["id"])
        if status["has_subscription"]:
            status["subscription_id"] = status["subscription"]["id"]
            status["stripe_customer_id"] = customer["id"]
        return status

    def cancel_at_period_end(self, subscription_id: str) -> dict:
        subscription = self.gateway.update_subscription(subscription_id, cancel_at_period_end=True)
        logger.info(f"Subscription {subscription_id} set to cancel at period end")
        return {
            "message": "Subscription will be cancelled at period end",
            "subscription": subscription,
        }

    # --- Cards ---

    def _customer_for_user(self, user_id: str) -> dict:
        customer = self.resolver.find_customer_for_user(user_id)
        if customer is None:
            raise CustomerNotFoundError("Customer not found for this userId")
        return customer

    def create_card(self, user_id: str, payment_method_id: Optional[str], make_default: bool = False) -> dict:
        """Attach a payment method to the user's customer."""
        if not payment_method_id:
            raise ValueError("paymentMethodId is required")
        customer = self._customer_for_user(user_id)

        payment_method = self.gateway.attach_payment_method(payment_method_id, customer["id"])
        if make_default:
            self.gateway.update_customer(
                customer["id"],
                invoice_settings={"default_payment_method": payment_method["id"]},
            )
        return {"success": True, "payment_method": payment_method}

    def list_cards(self, user_id: str) -> dict:
        customer = self._customer_for_user(user_id)
        cards: List[dict] = self.gateway.list_payment_methods(customer["id"], type="card", limit=100)
        invoice_settings = customer.get("invoice_settings") or {}
        return {
            "customer_id": customer["id"],
            "default_payment_method_id": object_id(invoice_settings.get("default_payment_method")),
            "cards": cards,
        }

    def set_default_card(self, user_id: str, payment_method_id: Optional[str]) -> dict:
        if not payment_method_id:
            raise ValueError("paymentMethodId is required")
        customer = self._customer_for_user(user_id)
        self._owned_payment_method(customer["id"], payment_method_id)

        self.gateway.update_customer(
            customer["id"],
            invoice_settings={"default_payment_method": payment_method_id},
        )
        return {"success": True, "default_payment_method_id": payment_method_id}

    def delete_card(self, user_id: str, payment_method_id: Optional[str]) -> dict:
        if not payment_method_id:
            raise ValueError("paymentMethodId is required")
        customer = self._customer_for_user(user_id)
        self._owned_payment_method(customer["id"], payment_method_id)

        payment_method = self.gateway.detach_payment_method(payment_method_id)
        return {"success": True, "payment_method": payment_method}

    def _owned_payment_method(self, customer_id: str, payment_method_id: str) -> dict:
        payment_method = self.gateway.retrieve_payment_method(payment_method_id)
        if object_id(payment_method.get("customer")) != customer_id:
            raise CustomerNotFoundError("Payment method not found for this customer")
        return payment_method
