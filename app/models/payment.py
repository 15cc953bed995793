"""
Payment model: append-only ledger of Stripe invoice events.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDMixin
from app.models.enums import PaymentStatus

if TYPE_CHECKING:
    from app.models.subscription import Subscription


class Payment(Base, UUIDMixin, TimestampMixin):
    """Payment recorded from a Stripe invoice."""

    __tablename__ = "payments"

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    # Invoice or payment intent id; not unique, every invoice event is its own row
    stripe_payment_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    payment_status: Mapped[str] = mapped_column(
        String(50),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    # Relationships
    subscription: Mapped[Optional["Subscription"]] = relationship(
        "Subscription",
        back_populates="payments",
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, stripe_payment_id={self.stripe_payment_id}, amount={self.amount})>"
