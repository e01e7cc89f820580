"""Service layer for inbound payment-gateway webhooks.

Checks run in a fixed order so callers get the most specific rejection:
required fields, event type, replay window, then signature. A stale but
correctly signed event is therefore reported as a replay.
"""

import json
import logging
import uuid
from datetime import timedelta
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.database.payment_repo import PaymentRepository
from app.database.subscription_repo import SubscriptionRepository
from app.integrations.payment_gateway import PaymentGateway
from app.models.billing_enums import PaymentStatus, SubscriptionStatus
from app.schemas.webhooks import WEBHOOK_EVENT_TYPES, WebhookEvent
from app.utils.exceptions import ValidationException, WebhookRejectedException
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("event_type", "transaction_id", "timestamp")


class WebhookService:
    """Validates and applies gateway events."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, tolerance: Optional[timedelta] = None):
        self.db = db
        self.gateway = gateway
        self.tolerance = tolerance or timedelta(seconds=settings.WEBHOOK_TOLERANCE_SECONDS)

    def validate(self, body: bytes, signature: Optional[str]) -> WebhookEvent:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationException("Webhook payload is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationException("Webhook payload must be a JSON object")

        for field_name in REQUIRED_FIELDS:
            if not data.get(field_name):
                raise ValidationException(f"Missing required field: {field_name}")

        if data["event_type"] not in WEBHOOK_EVENT_TYPES:
            raise WebhookRejectedException(
                "INVALID_EVENT_TYPE",
                f"Invalid event type: {data['event_type']}",
                details={"allowed": sorted(WEBHOOK_EVENT_TYPES)},
            )

        try:
            event = WebhookEvent.model_validate(data)
        except ValidationError as exc:
            raise ValidationException("Malformed webhook payload", details=exc.errors(include_url=False))

        age = abs(utcnow() - ensure_utc(event.timestamp))
        if age > self.tolerance:
            raise WebhookRejectedException(
                "WEBHOOK_REPLAY",
                "Webhook timestamp is outside the accepted window",
                details={"age_seconds": int(age.total_seconds())},
            )

        if not self.gateway.verify_webhook_signature(body, signature):
            raise WebhookRejectedException("INVALID_SIGNATURE", "Invalid webhook signature")

        return event

    async def handle(self, body: bytes, signature: Optional[str]) -> dict[str, Any]:
        event = self.validate(body, signature)
        logger.info(f"Webhook accepted: {event.event_type} txn={event.transaction_id}")

        if event.event_type in ("payment.succeeded", "payment.failed"):
            return await self._resolve_payment(event)
        if event.event_type == "subscription.cancelled":
            return await self._cancel_subscription(event)
        return {"event_type": event.event_type, "action": "acknowledged"}

    async def _resolve_payment(self, event: WebhookEvent) -> dict[str, Any]:
        payment = await PaymentRepository.get_by_transaction_id(self.db, event.transaction_id)
        if payment is None and event.payment_id:
            try:
                payment = await PaymentRepository.get_by_id(self.db, uuid.UUID(event.payment_id))
            except ValueError:
                payment = None
        if payment is None:
            logger.warning(f"Webhook for unknown transaction {event.transaction_id}")
            return {"event_type": event.event_type, "action": "ignored"}

        if PaymentStatus(payment.status) != PaymentStatus.PENDING:
            return {"event_type": event.event_type, "action": "noop", "payment_id": str(payment.id)}

        if event.event_type == "payment.succeeded":
            applied = await PaymentRepository.transition(
                self.db,
                payment.id,
                PaymentStatus.PENDING,
                PaymentStatus.COMPLETED,
                processed_at=ensure_utc(event.timestamp),
                gateway_transaction_id=event.transaction_id,
            )
        else:
            applied = await PaymentRepository.transition(
                self.db,
                payment.id,
                PaymentStatus.PENDING,
                PaymentStatus.FAILED,
                processed_at=ensure_utc(event.timestamp),
                gateway_transaction_id=event.transaction_id,
                failure_reason=event.failure_reason or "Reported failed by gateway",
            )
        return {
            "event_type": event.event_type,
            "action": "resolved" if applied else "noop",
            "payment_id": str(payment.id),
        }

    async def _cancel_subscription(self, event: WebhookEvent) -> dict[str, Any]:
        gateway_id = event.subscription_id or event.transaction_id
        subscription = await SubscriptionRepository.get_by_gateway_id(self.db, gateway_id)
        if subscription is None:
            logger.warning(f"Webhook for unknown remote subscription {gateway_id}")
            return {"event_type": event.event_type, "action": "ignored"}

        applied = await SubscriptionRepository.transition(
            self.db,
            subscription.id,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELLED,
            cancelled_at=utcnow(),
            cancellation_reason="Cancelled by payment gateway",
        )
        return {
            "event_type": event.event_type,
            "action": "cancelled" if applied else "noop",
            "subscription_id": str(subscription.id),
        }
