import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.core.locks import KeyedLockRegistry
from app.database.payment_repo import PaymentRepository
from app.models import Payment
from app.models.billing_enums import PaymentMethod, PaymentStatus, UserRole
from app.services.payment_service import PaymentService
from app.services.subscription_service import SubscriptionService
from app.utils.exceptions import (
    ConflictException,
    ForbiddenException,
    GatewayDeclinedException,
    GatewayUnavailableException,
    InvalidAmountException,
    InvalidStateException,
    MissingPaymentMethodException,
    PaymentNotFoundException,
    SubscriptionNotFoundException,
)
from app.utils.time import utcnow
from tests.conftest import actor_for, make_gateway


@pytest.fixture
async def subscribed(db, create_user, create_plan):
    """A user holding an active subscription to a 29.99 plan."""
    user = await create_user(email="payer@example.com")
    plan = await create_plan(name="Professional Plan", price="29.99")
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)
    return user, subscription


def _service(db, gateway):
    return PaymentService(
        db,
        gateway,
        charge_lock_registry=KeyedLockRegistry("CHARGE_IN_PROGRESS"),
        refund_lock_registry=KeyedLockRegistry("REFUND_IN_PROGRESS"),
    )


async def test_charge_refund_then_second_refund_rejected(db, gateway, subscribed):
    user, subscription = subscribed
    service = _service(db, gateway)

    payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_transaction_id.startswith("txn_")
    assert payment.processed_at is not None
    assert payment.description == "Payment for subscription"
    assert payment.currency == "USD"
    assert payment.subscription.id == subscription.id

    refunded = await service.refund(actor_for(user), payment.id)

    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_amount == Decimal("29.99")
    assert refunded.refunded_at is not None

    with pytest.raises(InvalidStateException):
        await service.refund(actor_for(user), payment.id)


async def test_partial_refund(db, gateway, subscribed):
    user, subscription = subscribed
    service = _service(db, gateway)
    payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    refunded = await service.refund(actor_for(user), payment.id, amount=Decimal("10.00"), reason="partial")

    assert refunded.refund_amount == Decimal("10.00")
    assert refunded.amount == Decimal("29.99")


async def test_refund_amount_bounds(db, gateway, subscribed):
    user, subscription = subscribed
    service = _service(db, gateway)
    payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    with pytest.raises(InvalidAmountException):
        await service.refund(actor_for(user), payment.id, amount=Decimal("30.00"))
    with pytest.raises(InvalidAmountException):
        await service.refund(actor_for(user), payment.id, amount=Decimal("0"))

    unchanged = await service.get(actor_for(user), payment.id)
    assert unchanged.status == PaymentStatus.COMPLETED


async def test_charge_validates_before_recording(db, gateway, subscribed):
    user, subscription = subscribed
    service = _service(db, gateway)

    with pytest.raises(InvalidAmountException):
        await service.charge(actor_for(user), subscription.id, Decimal("0.00"))
    with pytest.raises(MissingPaymentMethodException):
        await service.charge(actor_for(user), subscription.id, Decimal("5.00"), payment_method=None)

    assert await service.list_for_user(user.id) == []


async def test_charge_requires_ownership_even_for_admin(db, gateway, subscribed, create_user):
    _, subscription = subscribed
    stranger = await create_user(email="stranger@example.com")
    admin = await create_user(email="admin@example.com", role=UserRole.ADMIN)
    service = _service(db, gateway)

    with pytest.raises(ForbiddenException):
        await service.charge(actor_for(stranger), subscription.id, Decimal("29.99"))
    with pytest.raises(ForbiddenException):
        await service.charge(actor_for(admin), subscription.id, Decimal("29.99"))


async def test_charge_unknown_subscription(db, gateway, subscribed):
    user, _ = subscribed
    with pytest.raises(SubscriptionNotFoundException):
        await _service(db, gateway).charge(actor_for(user), uuid.uuid4(), Decimal("1.00"))


async def test_refund_access_owner_or_admin(db, gateway, subscribed, create_user):
    user, subscription = subscribed
    stranger = await create_user(email="stranger@example.com")
    admin = await create_user(email="admin@example.com", role=UserRole.ADMIN)
    service = _service(db, gateway)
    payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    with pytest.raises(ForbiddenException):
        await service.refund(actor_for(stranger), payment.id)
    with pytest.raises(PaymentNotFoundException):
        await service.refund(actor_for(admin), uuid.uuid4())

    refunded = await service.refund(actor_for(admin), payment.id)
    assert refunded.status == PaymentStatus.REFUNDED


async def test_declined_charge_is_recorded_as_failed(db, subscribed):
    user, subscription = subscribed
    service = _service(db, make_gateway(success_rate=0.0))

    with pytest.raises(GatewayDeclinedException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"), PaymentMethod.CARD)

    assert exc_info.value.status_code == 402
    payment = await service.get(actor_for(user), uuid.UUID(exc_info.value.details["payment_id"]))
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason

    # failed is terminal
    with pytest.raises(InvalidStateException):
        await service.refund(actor_for(user), payment.id)


async def test_declined_refund_leaves_payment_completed(db, gateway, subscribed):
    user, subscription = subscribed
    payment = await _service(db, gateway).charge(actor_for(user), subscription.id, Decimal("29.99"))

    declining = _service(db, make_gateway(success_rate=0.0))
    with pytest.raises(GatewayDeclinedException):
        await declining.refund(actor_for(user), payment.id)

    assert (await declining.get(actor_for(user), payment.id)).status == PaymentStatus.COMPLETED


async def test_gateway_timeout_leaves_payment_pending(db, subscribed):
    user, subscription = subscribed
    slow = make_gateway(timeout_seconds=0.05)
    slow.latency_ms["charge"] = (500, 500)
    service = _service(db, slow)

    with pytest.raises(GatewayUnavailableException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    payment_id = uuid.UUID(exc_info.value.details["payment_id"])
    payment = await service.get(actor_for(user), payment_id)
    assert payment.status == PaymentStatus.PENDING
    assert exc_info.value.status_code == 503


async def test_stale_pending_payments_are_reported(db, subscribed):
    user, subscription = subscribed
    slow = make_gateway(timeout_seconds=0.05)
    slow.latency_ms["charge"] = (500, 500)
    service = _service(db, slow)
    with pytest.raises(GatewayUnavailableException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"))
    payment_id = uuid.UUID(exc_info.value.details["payment_id"])

    assert await service.list_stale_pending(older_than=timedelta(minutes=30)) == []

    await db.execute(
        update(Payment).where(Payment.id == payment_id).values(created_at=utcnow() - timedelta(hours=2))
    )
    await db.commit()

    stale = await service.list_stale_pending(older_than=timedelta(minutes=30))
    assert [p.id for p in stale] == [payment_id]


async def test_concurrent_charge_for_same_subscription_conflicts(db, subscribed):
    user, subscription = subscribed
    slow = make_gateway()
    slow.latency_ms["charge"] = (800, 800)
    service = _service(db, slow)

    first = asyncio.create_task(service.charge(actor_for(user), subscription.id, Decimal("29.99")))
    await asyncio.sleep(0.2)

    with pytest.raises(ConflictException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"))
    assert exc_info.value.code == "CHARGE_IN_PROGRESS"

    payment = await first
    assert payment.status == PaymentStatus.COMPLETED
    assert len(await service.list_for_user(user.id)) == 1


async def test_settlement_retries_transient_storage_errors(db, gateway, subscribed):
    user, subscription = subscribed
    service = _service(db, gateway)
    real_execute = db.execute
    failures = {"left": 1}

    async def flaky_execute(statement, *args, **kwargs):
        if getattr(statement, "is_update", False) and failures["left"]:
            failures["left"] -= 1
            raise OperationalError("UPDATE tbl_payments", {}, Exception("connection reset"))
        return await real_execute(statement, *args, **kwargs)

    with patch.object(db, "execute", side_effect=flaky_execute):
        payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))

    assert failures["left"] == 0
    assert payment.status == PaymentStatus.COMPLETED


async def test_transition_never_moves_settled_payment(db, gateway, subscribed):
    user, subscription = subscribed
    payment = await _service(db, gateway).charge(actor_for(user), subscription.id, Decimal("29.99"))

    applied = await PaymentRepository.transition(db, payment.id, PaymentStatus.PENDING, PaymentStatus.FAILED)

    assert applied is False
    assert (await PaymentRepository.get_by_id(db, payment.id)).status == PaymentStatus.COMPLETED


async def test_transition_rejects_edges_outside_state_table(db, subscribed):
    user, subscription = subscribed
    service = _service(db, make_gateway(success_rate=0.0))
    with pytest.raises(GatewayDeclinedException) as exc_info:
        await service.charge(actor_for(user), subscription.id, Decimal("29.99"))
    payment_id = uuid.UUID(exc_info.value.details["payment_id"])

    with pytest.raises(InvalidStateException):
        await PaymentRepository.transition(db, payment_id, PaymentStatus.FAILED, PaymentStatus.COMPLETED)
    with pytest.raises(InvalidStateException):
        await PaymentRepository.transition(db, payment_id, PaymentStatus.REFUNDED, PaymentStatus.COMPLETED)

    assert (await PaymentRepository.get_by_id(db, payment_id)).status == PaymentStatus.FAILED


async def test_concurrent_refunds_for_same_payment_conflict(db, subscribed):
    user, subscription = subscribed
    slow = make_gateway()
    service = _service(db, slow)
    payment = await service.charge(actor_for(user), subscription.id, Decimal("29.99"))
    slow.latency_ms["refund"] = (800, 800)

    first = asyncio.create_task(service.refund(actor_for(user), payment.id, amount=Decimal("10.00")))
    await asyncio.sleep(0.2)

    with pytest.raises(ConflictException) as exc_info:
        await service.refund(actor_for(user), payment.id, amount=Decimal("10.00"))
    assert exc_info.value.code == "REFUND_IN_PROGRESS"

    refunded = await first
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_amount == Decimal("10.00")

    with pytest.raises(InvalidStateException):
        await service.refund(actor_for(user), payment.id)
