"""Inbound payment-gateway webhook schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

WEBHOOK_EVENT_TYPES = frozenset(
    {
        "payment.succeeded",
        "payment.failed",
        "subscription.created",
        "subscription.cancelled",
        "subscription.updated",
    }
)


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    timestamp: datetime
    subscription_id: Optional[str] = None
    # our payment id, echoed back by the processor from the charge reference
    payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
