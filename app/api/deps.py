"""
API dependencies: the Stripe gateway and the billing components built on it.

The gateway is constructed once per process; components are built per request
around the request's database session. Tests override `get_stripe_gateway`.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_async_session
from app.services.billing import BillingService
from app.services.customer_resolver import CustomerResolver
from app.services.payments import PaymentRecorder
from app.services.reconciler import SubscriptionReconciler
from app.services.stripe_gateway import StripeGateway
from app.services.sync import SubscriptionSynchronizer
from app.services.webhooks import WebhookDispatcher


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    """Process-wide Stripe gateway."""
    settings = get_settings()
    return StripeGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        mobile_api_version=settings.stripe_mobile_api_version,
    )


def get_customer_resolver(
    db: AsyncSession = Depends(get_async_session),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CustomerResolver:
    return CustomerResolver(db, gateway)


def get_reconciler(
    db: AsyncSession = Depends(get_async_session),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    resolver: CustomerResolver = Depends(get_customer_resolver),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(db, gateway, resolver)


def get_billing_service(
    gateway: StripeGateway = Depends(get_stripe_gateway),
    resolver: CustomerResolver = Depends(get_customer_resolver),
) -> BillingService:
    return BillingService(gateway, resolver, get_settings().price_ids)


def get_webhook_dispatcher(
    db: AsyncSession = Depends(get_async_session),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    resolver: CustomerResolver = Depends(get_customer_resolver),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> WebhookDispatcher:
    return WebhookDispatcher(db, gateway, reconciler, PaymentRecorder(db, resolver))


def get_synchronizer(
    db: AsyncSession = Depends(get_async_session),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
) -> SubscriptionSynchronizer:
    return SubscriptionSynchronizer(db, gateway, reconciler)
