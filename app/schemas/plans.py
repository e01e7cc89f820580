"""Plan schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing_enums import BillingCycle


class PlanFeature(BaseModel):
    """Named plan feature."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=500)


class PlanCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    max_users: int = Field(default=1, ge=1)
    features: list[PlanFeature] = Field(default_factory=list)
    trial_days: int = Field(default=0, ge=0)
    sort_order: int = 0

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return value.upper()


class PlanUpdateRequest(BaseModel):
    """Partial plan update; omitted fields are left untouched."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    billing_cycle: Optional[BillingCycle] = None
    max_users: Optional[int] = Field(None, ge=1)
    features: Optional[list[PlanFeature]] = None
    trial_days: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return value.upper()


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    price: Decimal
    currency: str
    billing_cycle: BillingCycle
    max_users: int
    features: list[PlanFeature]
    trial_days: int
    is_active: bool
    sort_order: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value)
