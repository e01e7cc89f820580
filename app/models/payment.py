"""Payment model - ledger entry for one attempted charge and its refund."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TIMESTAMP

from app.models.base import Base
from app.models.billing_enums import PaymentMethod, PaymentStatus, enum_values
from app.models.models import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.models import User
    from app.models.subscription import Subscription


class Payment(UUIDMixin, TimestampMixin, Base):
    """Payment ledger entry.

    Settled amounts are never corrected in place; the only mutations are the
    status transitions pending -> completed | failed and completed -> refunded.
    """

    __tablename__ = "tbl_payments"
    __table_args__ = (
        Index("ix_payments_user", "user_id"),
        Index("ix_payments_subscription", "subscription_id"),
        Index("ix_payments_gateway_txn", "gateway_transaction_id"),
        CheckConstraint("amount >= 0.01", name="ck_payments_amount_min"),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= amount)",
            name="ck_payments_refund_bounded",
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_users.id", ondelete="CASCADE"), nullable=False
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_subscriptions.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=PaymentMethod.CARD,
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(String(64))
    processed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    user: Mapped["User"] = relationship("User", back_populates="payments")
    subscription: Mapped["Subscription"] = relationship(
        "Subscription", back_populates="payments", lazy="selectin"
    )
