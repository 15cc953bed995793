"""
Subscription model: one row per billing period of a Stripe subscription.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDMixin
from app.models.enums import SubscriptionStatus

if TYPE_CHECKING:
    from app.models.payment import Payment


class Subscription(Base, UUIDMixin, TimestampMixin):
    """Billing period of a user's Stripe subscription."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "stripe_subscription_id",
            "start_date",
            name="uq_subscriptions_stripe_subscription_period",
        ),
    )

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    stripe_customer_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    stripe_subscription_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )
    plan_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    # Period boundaries are naive UTC-3 wall-clock timestamps
    start_date: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    canceled_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Relationships
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="subscription",
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, stripe_subscription_id={self.stripe_subscription_id}, "
            f"status={self.status}, start_date={self.start_date})>"
        )
