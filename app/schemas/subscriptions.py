"""Subscription schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing_enums import PaymentMethod, SubscriptionStatus
from app.schemas.plans import PlanResponse


class SubscriptionCreateRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, description="Plan ID is required")
    payment_method: PaymentMethod = PaymentMethod.CARD


class SubscriptionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SubscriptionSuspendRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SubscriptionSummary(BaseModel):
    """Subscription without the embedded plan."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    next_billing_date: datetime
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    suspension_reason: Optional[str] = None
    trial_end: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("id", "user_id", "plan_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return str(value)


class SubscriptionResponse(SubscriptionSummary):
    """Subscription with a snapshot of its plan."""

    plan: PlanResponse
