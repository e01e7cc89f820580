import random
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app.models import Subscription
from app.models.billing_enums import BillingCycle, PaymentMethod, SubscriptionStatus, UserRole
from app.schemas.plans import PlanUpdateRequest
from app.services.plan_service import PlanService
from app.services.subscription_service import SubscriptionService
from app.utils.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    PlanNotFoundException,
    SubscriptionNotFoundException,
)
from app.utils.time import ensure_utc, utcnow
from tests.conftest import actor_for, make_gateway


async def _active_count(db, user_id) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.ACTIVE)
    )
    return result.scalar_one()


async def test_create_snapshots_plan_and_sets_monthly_period(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="9.99", billing_cycle=BillingCycle.MONTHLY)
    before = utcnow()

    subscription = await SubscriptionService.create(db, actor_for(user), plan.id, PaymentMethod.PAYPAL)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.amount == Decimal("9.99")
    assert subscription.currency == "USD"
    assert subscription.payment_method == PaymentMethod.PAYPAL
    assert subscription.plan.id == plan.id
    start = ensure_utc(subscription.start_date)
    end = ensure_utc(subscription.end_date)
    assert start >= before - timedelta(seconds=1)
    assert 28 <= (end - start).days <= 31
    assert ensure_utc(subscription.next_billing_date) == end
    assert subscription.trial_end is None


async def test_create_with_trial_sets_trial_end(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(trial_days=14)

    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    trial = ensure_utc(subscription.trial_end) - ensure_utc(subscription.start_date)
    assert trial == timedelta(days=14)


async def test_yearly_plan_period_is_twelve_months(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(billing_cycle=BillingCycle.YEARLY)

    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    assert 365 <= (ensure_utc(subscription.end_date) - ensure_utc(subscription.start_date)).days <= 366


async def test_plan_edit_does_not_change_existing_subscription(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="9.99")
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    await PlanService.update(db, plan.id, PlanUpdateRequest(price=Decimal("19.99")))

    reloaded = await SubscriptionService.get(db, actor_for(user), subscription.id)
    assert reloaded.amount == Decimal("9.99")


async def test_create_rejects_second_active_subscription(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    first = await SubscriptionService.create(db, actor_for(user), plan.id)

    with pytest.raises(ConflictException) as exc_info:
        await SubscriptionService.create(db, actor_for(user), plan.id)

    assert exc_info.value.details["active_subscription_id"] == str(first.id)
    assert await _active_count(db, user.id) == 1


async def test_create_rejects_missing_or_inactive_plan(db, create_user, create_plan):
    user = await create_user()
    inactive = await create_plan(is_active=False)

    with pytest.raises(PlanNotFoundException):
        await SubscriptionService.create(db, actor_for(user), inactive.id)

    with pytest.raises(PlanNotFoundException):
        await SubscriptionService.create(db, actor_for(user), uuid.uuid4())


async def test_cancel_then_cancel_again_is_rejected(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    cancelled = await SubscriptionService.cancel(db, actor_for(user), subscription.id)

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.cancellation_reason == "User requested cancellation"

    with pytest.raises(InvalidStateException) as exc_info:
        await SubscriptionService.cancel(db, actor_for(user), subscription.id, reason="again")
    assert exc_info.value.code == "ALREADY_CANCELLED"


async def test_reactivate_cancelled_subscription(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)
    await SubscriptionService.cancel(db, actor_for(user), subscription.id, reason="too expensive")

    reactivated = await SubscriptionService.reactivate(db, actor_for(user), subscription.id)

    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert reactivated.cancelled_at is None
    assert reactivated.cancellation_reason is None


async def test_reactivate_conflicts_with_newer_active_subscription(db, create_user, create_plan):
    user = await create_user()
    basic = await create_plan(name="Basic")
    pro = await create_plan(name="Pro", price="29.99")
    old = await SubscriptionService.create(db, actor_for(user), basic.id)
    await SubscriptionService.cancel(db, actor_for(user), old.id)
    await SubscriptionService.create(db, actor_for(user), pro.id)

    with pytest.raises(ConflictException):
        await SubscriptionService.reactivate(db, actor_for(user), old.id)

    assert await _active_count(db, user.id) == 1


async def test_reactivate_requires_cancelled_status(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    with pytest.raises(InvalidStateException):
        await SubscriptionService.reactivate(db, actor_for(user), subscription.id)


async def test_access_is_owner_or_admin(db, create_user, create_plan):
    owner = await create_user(email="owner@example.com")
    stranger = await create_user(email="stranger@example.com")
    admin = await create_user(email="admin@example.com", role=UserRole.ADMIN)
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(owner), plan.id)

    with pytest.raises(ForbiddenException):
        await SubscriptionService.get(db, actor_for(stranger), subscription.id)
    with pytest.raises(ForbiddenException):
        await SubscriptionService.cancel(db, actor_for(stranger), subscription.id)

    cancelled = await SubscriptionService.cancel(db, actor_for(admin), subscription.id)
    assert cancelled.status == SubscriptionStatus.CANCELLED


async def test_get_unknown_subscription(db, create_user):
    user = await create_user()
    with pytest.raises(SubscriptionNotFoundException):
        await SubscriptionService.get(db, actor_for(user), uuid.uuid4())


async def test_suspend_and_resume_are_admin_only(db, create_user, create_plan):
    user = await create_user(email="user@example.com")
    admin = await create_user(email="admin@example.com", role=UserRole.ADMIN)
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    with pytest.raises(ForbiddenException):
        await SubscriptionService.suspend(db, actor_for(user), subscription.id)

    suspended = await SubscriptionService.suspend(db, actor_for(admin), subscription.id, reason="chargeback")
    assert suspended.status == SubscriptionStatus.SUSPENDED
    assert suspended.suspension_reason == "chargeback"
    assert await _active_count(db, user.id) == 0

    with pytest.raises(ForbiddenException):
        await SubscriptionService.resume(db, actor_for(user), subscription.id)

    resumed = await SubscriptionService.resume(db, actor_for(admin), subscription.id)
    assert resumed.status == SubscriptionStatus.ACTIVE
    assert resumed.suspension_reason is None


async def test_resume_conflicts_when_user_subscribed_meanwhile(db, create_user, create_plan):
    user = await create_user(email="user@example.com")
    admin = await create_user(email="admin@example.com", role=UserRole.ADMIN)
    plan = await create_plan()
    held = await SubscriptionService.create(db, actor_for(user), plan.id)
    await SubscriptionService.suspend(db, actor_for(admin), held.id)
    await SubscriptionService.create(db, actor_for(user), plan.id)

    with pytest.raises(ConflictException):
        await SubscriptionService.resume(db, actor_for(admin), held.id)


async def test_expire_only_after_end_date(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan()
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id)

    with pytest.raises(InvalidStateException):
        await SubscriptionService.expire(db, subscription.id)

    expired = await SubscriptionService.expire(db, subscription.id, now=utcnow() + timedelta(days=40))
    assert expired.status == SubscriptionStatus.EXPIRED

    # expired is terminal
    with pytest.raises(InvalidStateException):
        await SubscriptionService.cancel(db, actor_for(user), subscription.id)


async def test_expire_due_sweeps_overdue_active_subscriptions(db, create_user, create_plan):
    first = await create_user(email="first@example.com")
    second = await create_user(email="second@example.com")
    plan = await create_plan()
    a = await SubscriptionService.create(db, actor_for(first), plan.id)
    b = await SubscriptionService.create(db, actor_for(second), plan.id)
    await SubscriptionService.cancel(db, actor_for(second), b.id)

    expired = await SubscriptionService.expire_due(db, now=utcnow() + timedelta(days=40))

    assert [s.id for s in expired] == [a.id]


async def test_random_lifecycle_keeps_at_most_one_active(db, create_user, create_plan):
    user = await create_user()
    actor = actor_for(user)
    plans = [await create_plan(name=f"Plan {i}", sort_order=i) for i in range(3)]
    rng = random.Random(20240501)
    subscriptions = []

    for _ in range(60):
        op = rng.choice(["create", "cancel", "reactivate"])
        try:
            if op == "create":
                subscriptions.append((await SubscriptionService.create(db, actor, rng.choice(plans).id)).id)
            elif subscriptions and op == "cancel":
                await SubscriptionService.cancel(db, actor, rng.choice(subscriptions))
            elif subscriptions:
                await SubscriptionService.reactivate(db, actor, rng.choice(subscriptions))
        except (ConflictException, InvalidStateException):
            pass
        assert await _active_count(db, user.id) <= 1


async def test_create_mirrors_paid_subscription_at_gateway(db, gateway, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="29.99", billing_cycle=BillingCycle.QUARTERLY)

    subscription = await SubscriptionService.create(db, actor_for(user), plan.id, gateway=gateway)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.gateway_subscription_id.startswith("sub_")


async def test_declined_remote_create_keeps_local_subscription(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="29.99")

    subscription = await SubscriptionService.create(
        db, actor_for(user), plan.id, gateway=make_gateway(success_rate=0.0)
    )

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.gateway_subscription_id is None


async def test_free_plan_is_not_mirrored(db, gateway, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="0.00")

    with patch.object(gateway, "create_remote_subscription") as remote_create:
        subscription = await SubscriptionService.create(db, actor_for(user), plan.id, gateway=gateway)

    remote_create.assert_not_called()
    assert subscription.gateway_subscription_id is None


async def test_cancel_cancels_remote_subscription(db, gateway, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="29.99")
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id, gateway=gateway)
    remote_id = subscription.gateway_subscription_id

    with patch.object(
        gateway, "cancel_remote_subscription", wraps=gateway.cancel_remote_subscription
    ) as remote_cancel:
        cancelled = await SubscriptionService.cancel(db, actor_for(user), subscription.id, gateway=gateway)

    remote_cancel.assert_awaited_once_with(remote_id)
    assert cancelled.status == SubscriptionStatus.CANCELLED


async def test_cancel_stands_when_gateway_times_out(db, create_user, create_plan):
    user = await create_user()
    plan = await create_plan(price="29.99")
    slow = make_gateway(timeout_seconds=0.05)
    subscription = await SubscriptionService.create(db, actor_for(user), plan.id, gateway=slow)
    slow.latency_ms["cancel_subscription"] = (500, 500)

    cancelled = await SubscriptionService.cancel(db, actor_for(user), subscription.id, gateway=slow)

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.gateway_subscription_id == subscription.gateway_subscription_id
