"""
SQLAlchemy models for the billing tables.
"""
from app.models.base import Base, TimestampMixin, UUIDMixin
from app.models.enums import ACTIVE_LIKE_STATUSES, PaymentStatus, SubscriptionStatus
from app.models.payment import Payment
from app.models.subscription import Subscription

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # Enums
    "SubscriptionStatus",
    "PaymentStatus",
    "ACTIVE_LIKE_STATUSES",
    # Models
    "Subscription",
    "Payment",
]
