# API routes
from app.api.deps import (
    get_billing_service,
    get_stripe_gateway,
    get_synchronizer,
    get_webhook_dispatcher,
)
from app.api.errors import APIError, register_error_handlers

__all__ = [
    "get_stripe_gateway",
    "get_billing_service",
    "get_webhook_dispatcher",
    "get_synchronizer",
    "APIError",
    "register_error_handlers",
]
