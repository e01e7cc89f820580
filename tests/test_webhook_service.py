import json
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.locks import KeyedLockRegistry
from app.models.billing_enums import PaymentStatus, SubscriptionStatus
from app.services.payment_service import PaymentService
from app.services.subscription_service import SubscriptionService
from app.services.webhook_service import WebhookService
from app.utils.exceptions import GatewayUnavailableException, ValidationException, WebhookRejectedException
from app.utils.time import utcnow
from tests.conftest import actor_for, make_gateway


def _event(**overrides) -> dict:
    event = {
        "event_type": "payment.succeeded",
        "transaction_id": "txn_abc",
        "timestamp": utcnow().isoformat(),
    }
    event.update(overrides)
    return event


def _signed(gateway, event: dict) -> tuple[bytes, str]:
    body = json.dumps(event).encode()
    return body, gateway.generate_signature(body)


@pytest.fixture
async def pending_payment(db, create_user, create_plan):
    """A charge whose gateway call timed out, leaving the payment pending."""
    user = await create_user(email="payer@example.com")
    plan = await create_plan(price="29.99")
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)
    slow = make_gateway(timeout_seconds=0.01)
    slow.latency_ms["charge"] = (200, 200)
    service = PaymentService(db, slow, charge_lock_registry=KeyedLockRegistry())
    with pytest.raises(GatewayUnavailableException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"))
    return user, exc_info.value.details["payment_id"]


async def test_stale_but_correctly_signed_event_is_a_replay(db, gateway):
    body, signature = _signed(gateway, _event(timestamp=(utcnow() - timedelta(minutes=10)).isoformat()))

    with pytest.raises(WebhookRejectedException) as exc_info:
        await WebhookService(db, gateway).handle(body, signature)

    assert exc_info.value.code == "WEBHOOK_REPLAY"
    assert exc_info.value.status_code == 400


async def test_unknown_event_type_rejected(db, gateway):
    body, signature = _signed(gateway, _event(event_type="invoice.paid"))

    with pytest.raises(WebhookRejectedException) as exc_info:
        await WebhookService(db, gateway).handle(body, signature)
    assert exc_info.value.code == "INVALID_EVENT_TYPE"


async def test_bad_signature_rejected(db, gateway):
    body, _ = _signed(gateway, _event())

    with pytest.raises(WebhookRejectedException) as exc_info:
        await WebhookService(db, gateway).handle(body, "0" * 64)
    assert exc_info.value.code == "INVALID_SIGNATURE"


async def test_missing_fields_rejected_first(db, gateway):
    event = _event(event_type="invoice.paid")
    del event["transaction_id"]
    body, signature = _signed(gateway, event)

    with pytest.raises(ValidationException) as exc_info:
        await WebhookService(db, gateway).handle(body, signature)
    assert exc_info.value.code == "VALIDATION_ERROR"


async def test_non_json_body_rejected(db, gateway):
    with pytest.raises(ValidationException):
        await WebhookService(db, gateway).handle(b"not json", "sig")


async def test_payment_succeeded_resolves_pending_payment(db, gateway, pending_payment):
    user, payment_id = pending_payment
    body, signature = _signed(gateway, _event(transaction_id="txn_settled", payment_id=payment_id))

    result = await WebhookService(db, gateway).handle(body, signature)

    assert result == {"event_type": "payment.succeeded", "action": "resolved", "payment_id": payment_id}
    payment = await PaymentService(db, gateway).get(actor_for(user), uuid.UUID(payment_id))
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_transaction_id == "txn_settled"

    # redelivery is a no-op
    again = await WebhookService(db, gateway).handle(body, signature)
    assert again["action"] == "noop"


async def test_payment_failed_marks_pending_payment_failed(db, gateway, pending_payment):
    user, payment_id = pending_payment
    body, signature = _signed(
        gateway,
        _event(event_type="payment.failed", transaction_id="txn_bad", payment_id=payment_id, failure_reason="Expired card"),
    )

    await WebhookService(db, gateway).handle(body, signature)

    payment = await PaymentService(db, gateway).get(actor_for(user), uuid.UUID(payment_id))
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Expired card"


async def test_unknown_transaction_is_ignored(db, gateway):
    body, signature = _signed(gateway, _event(transaction_id="txn_unknown"))

    result = await WebhookService(db, gateway).handle(body, signature)

    assert result["action"] == "ignored"


async def test_subscription_cancelled_event(db, gateway, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id, gateway=gateway)
    assert subscription.gateway_subscription_id
    body, signature = _signed(
        gateway,
        _event(
            event_type="subscription.cancelled",
            transaction_id="evt_1",
            subscription_id=subscription.gateway_subscription_id,
        ),
    )

    result = await WebhookService(db, gateway).handle(body, signature)

    assert result["action"] == "cancelled"
    reloaded = await SubscriptionService.get(db, actor_for(user), subscription.id)
    assert reloaded.status == SubscriptionStatus.CANCELLED


async def test_other_events_are_acknowledged(db, gateway):
    body, signature = _signed(gateway, _event(event_type="subscription.updated"))

    result = await WebhookService(db, gateway).handle(body, signature)

    assert result == {"event_type": "subscription.updated", "action": "acknowledged"}
