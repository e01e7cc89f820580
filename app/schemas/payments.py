"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing_enums import PaymentMethod, PaymentStatus
from app.schemas.subscriptions import SubscriptionResponse


class PaymentProcessRequest(BaseModel):
    subscription_id: str = Field(..., min_length=1, description="Subscription ID is required")
    amount: Decimal = Field(..., ge=Decimal("0.01"), max_digits=10, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.CARD
    description: Optional[str] = Field(None, max_length=500)


class PaymentRefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    subscription_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: PaymentMethod
    description: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    subscription: Optional[SubscriptionResponse] = None

    @field_validator("id", "user_id", "subscription_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return str(value)
