"""Subscription model - User's subscription to a plan.

This module contains the Subscription model which links a user to a plan
and tracks subscription status, billing periods, and the snapshotted price.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TIMESTAMP

from app.models.base import Base
from app.models.billing_enums import PaymentMethod, SubscriptionStatus, enum_values
from app.models.models import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.models import User
    from app.models.payment import Payment
    from app.models.plan import Plan


class Subscription(UUIDMixin, TimestampMixin, Base):
    """User subscription model.

    At most one subscription per user may be active; the partial unique index
    below backs the check made by the service layer. Cancellation is a status
    change, rows are never deleted.
    """

    __tablename__ = "tbl_subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user", "user_id"),
        Index(
            "uq_subscriptions_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_subscriptions_gateway_id", "gateway_subscription_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_users.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_mstr_plans.id"), nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    next_billing_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    # Snapshot of the plan at creation time
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=PaymentMethod.CARD,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    suspension_reason: Mapped[Optional[str]] = mapped_column(Text)
    trial_end: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    gateway_subscription_id: Mapped[Optional[str]] = mapped_column(String(64))

    user: Mapped["User"] = relationship("User", back_populates="subscriptions")
    plan: Mapped["Plan"] = relationship("Plan", back_populates="subscriptions", lazy="selectin")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="subscription")
