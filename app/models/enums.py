"""
Enum types for database models.
"""
from enum import Enum


class SubscriptionStatus(str, Enum):
    """Local subscription status.

    Provider statuses are stored verbatim; COMPLETED is the local terminal
    status of a billing period closed by a rollover.
    """
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


class PaymentStatus(str, Enum):
    """Outcome of a recorded invoice payment."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Rows the catch-up sync re-checks and the rollover treats as the current period
ACTIVE_LIKE_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.PAST_DUE.value,
)
