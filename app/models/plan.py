"""Plan model - Subscription plan definitions.

This module contains the Plan model which defines a priced offering with its
billing cycle, seat limit, feature list and optional trial period.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Enum, Integer, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.billing_enums import BillingCycle, enum_values
from app.models.models import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.subscription import Subscription


class Plan(UUIDMixin, TimestampMixin, Base):
    """Subscription plan model.

    Price and currency are copied onto each Subscription at creation time, so
    administrative edits never alter existing subscriptions. Plans are
    deactivated rather than deleted.
    """

    __tablename__ = "tbl_mstr_plans"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_plans_price_non_negative"),
        CheckConstraint("max_users >= 1", name="ck_plans_max_users_positive"),
        CheckConstraint("trial_days >= 0", name="ck_plans_trial_days_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        Enum(BillingCycle, name="billing_cycle", native_enum=False, values_callable=enum_values),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    # list of {"name": ..., "description": ...}
    features: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    subscriptions: Mapped[list["Subscription"]] = relationship("Subscription", back_populates="plan")
