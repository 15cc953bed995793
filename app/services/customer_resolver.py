"""
Customer resolution between local user ids and Stripe customers.

Stripe customer metadata (`userId` / `supabase_user_id`) is the source of
truth; the `subscriptions.stripe_customer_id` column is a fallback cache.
"""
import logging
from functools import partial
from typing import Awaitable, Callable, List, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import Subscription
from app.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

USER_ID_METADATA_KEYS = ("userId", "supabase_user_id")

ResolverStrategy = Callable[[str], Awaitable[Optional[str]]]


def user_id_from_metadata(metadata: Optional[dict]) -> Optional[str]:
    """Read the local user id from a Stripe metadata map."""
    if not metadata:
        return None
    for key in USER_ID_METADATA_KEYS:
        if metadata.get(key):
            return metadata[key]
    return None


async def user_id_from_customer_metadata(gateway: StripeGateway, customer_id: str) -> Optional[str]:
    """Strategy: read the user id from the Stripe customer's metadata."""
    try:
        customer = gateway.retrieve_customer(customer_id)
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve Stripe customer {customer_id}: {e}")
        return None
    return user_id_from_metadata(customer.get("metadata"))


async def user_id_from_local_subscriptions(db: AsyncSession, customer_id: str) -> Optional[str]:
    """Strategy: reuse the user id of any local subscription for this customer."""
    result = await db.execute(
        select(Subscription.user_id)
        .where(Subscription.stripe_customer_id == customer_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


class CustomerResolver:
    """Maps Stripe customers to local users and back."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        strategies: Optional[List[ResolverStrategy]] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.strategies = strategies or [
            partial(user_id_from_customer_metadata, gateway),
            partial(user_id_from_local_subscriptions, db),
        ]

    async def resolve_user_id(self, customer_id: Optional[str]) -> Optional[str]:
        """Return the local user id owning a Stripe customer, or None."""
        if not customer_id:
            return None

        for strategy in self.strategies:
            user_id = await strategy(customer_id)
            if user_id:
                return user_id

        logger.warning(f"No local user found for Stripe customer {customer_id}")
        return None

    def find_customer_for_user(self, user_id: str) -> Optional[dict]:
        """Search Stripe for the customer tagged with this user id."""
        customers = self.gateway.search_customers(
            query=f"metadata['userId']:'{user_id}'",
            limit=1,
        )
        return customers[0] if customers else None

    def get_or_create_customer(
        self,
        user_id: Optional[str],
        email: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> dict:
        """
        Get the Stripe customer for a user, creating it on a miss.

        A search failure is treated as a miss. An existing customer gets its
        email and metadata brought up to date.
        """
        customer = None
        if user_id:
            try:
                customer = self.find_customer_for_user(user_id)
            except stripe.StripeError as e:
                logger.warning(f"Stripe customer search failed, creating new customer: {e}")

        if customer:
            return self.ensure_customer_metadata(customer, email=email, user_id=user_id, user_name=user_name)

        params = {"metadata": build_customer_metadata(user_id, user_name)}
        if email:
            params["email"] = email
        if user_name:
            params["name"] = user_name

        customer = self.gateway.create_customer(**params)
        logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
        return customer

    def ensure_customer_metadata(
        self,
        customer: dict,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> dict:
        """Update email and identity metadata on a customer when they differ."""
        metadata = customer.get("metadata") or {}
        needs_update = (
            (email and customer.get("email") != email)
            or (user_id and metadata.get("userId") != user_id)
            or (user_name and metadata.get("userName") != str(user_name))
        )
        if not needs_update:
            return customer

        params = {"metadata": {**metadata, **build_customer_metadata(user_id, user_name)}}
        if email:
            params["email"] = email

        return self.gateway.update_customer(customer["id"], **params)


def build_customer_metadata(user_id: Optional[str], user_name: Optional[str] = None, **extra: str) -> dict:
    """Identity metadata written on Stripe customers and intents."""
    metadata = {}
    if user_id:
        metadata["userId"] = user_id
        metadata["supabase_user_id"] = user_id
    if user_name:
        metadata["userName"] = str(user_name)
    metadata.update({key: value for key, value in extra.items() if value is not None})
    return metadata
