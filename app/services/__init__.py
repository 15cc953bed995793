# Business logic services
from app.services.billing import BillingService, CustomerNotFoundError, resolve_price_id
from app.services.customer_resolver import CustomerResolver
from app.services.payments import PaymentRecorder, classify_invoice_status
from app.services.reconciler import SubscriptionReconciler, derive_period, derive_plan_name
from app.services.stripe_gateway import StripeGateway, WebhookSignatureError
from app.services.sync import SubscriptionSynchronizer, SyncSummary
from app.services.webhooks import WebhookDispatcher

__all__ = [
    "StripeGateway",
    "WebhookSignatureError",
    "CustomerResolver",
    "SubscriptionReconciler",
    "derive_period",
    "derive_plan_name",
    "PaymentRecorder",
    "classify_invoice_status",
    "WebhookDispatcher",
    "SubscriptionSynchronizer",
    "SyncSummary",
    "BillingService",
    "CustomerNotFoundError",
    "resolve_price_id",
]
