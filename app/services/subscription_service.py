"""Service layer for subscription business logic.

This module owns the subscription state machine:

    active    -> cancelled | expired | suspended
    cancelled -> active      (reactivation)
    suspended -> active      (resume after an administrative hold)

Key Concepts:
- Single active subscription: a user holds at most one subscription with
  status "active". The rule is checked on every path that can produce an
  active subscription (create, reactivate, resume) and backed by a partial
  unique index in the database.
- Snapshot: price and currency are copied from the plan at creation, so later
  plan edits never alter existing subscriptions.
- Guarded transitions: every status change is a compare-and-swap on the
  current status, so two concurrent requests cannot both win.
- Remote mirror: when a gateway is supplied, paid subscriptions are also
  created at the processor and the remote id is stored, so processor-side
  cancellations can be reconciled by webhook. The local record stays
  authoritative: a processor failure is logged and never undoes a local change.

Architecture:
- Repository: Fetches raw data and applies conditional updates
- Service: Applies business rules and access policy
- Route: Orchestrates service calls and returns HTTP responses
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ActorIdentity, ensure_access
from app.database.plan_repo import PlanRepository
from app.database.subscription_repo import SubscriptionRepository
from app.integrations.payment_gateway import GatewayCustomer, PaymentGateway, next_billing_date
from app.models.billing_enums import (
    BillingCycle,
    PaymentMethod,
    SubscriptionStatus,
    UserRole,
    can_transition_subscription,
)
from app.models.subscription import Subscription
from app.services.session_service import SessionAuthority
from app.utils.exceptions import (
    ConflictException,
    GatewayUnavailableException,
    InvalidStateException,
    PlanNotFoundException,
    SubscriptionNotFoundException,
)
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_CONFLICT = "User already has an active subscription"


class SubscriptionService:
    """Service for subscription business logic."""

    @staticmethod
    async def _load(db: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
        subscription = await SubscriptionRepository.get_by_id(db, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundException()
        return subscription

    @staticmethod
    async def _ensure_no_other_active(
        db: AsyncSession, user_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        existing = await SubscriptionRepository.get_active_for_user(db, user_id, exclude_id=exclude_id)
        if existing is not None:
            raise ConflictException(
                ACTIVE_SUBSCRIPTION_CONFLICT,
                details={"active_subscription_id": str(existing.id)},
            )

    @staticmethod
    async def _transition(
        db: AsyncSession,
        subscription: Subscription,
        target: SubscriptionStatus,
        **values,
    ) -> Subscription:
        """Apply a status change that is legal from the subscription's current status."""
        current = SubscriptionStatus(subscription.status)
        if not can_transition_subscription(current, target):
            if current == SubscriptionStatus.CANCELLED and target == SubscriptionStatus.CANCELLED:
                raise InvalidStateException("Subscription is already cancelled", code="ALREADY_CANCELLED")
            raise InvalidStateException(
                f"Cannot change subscription from {current.value} to {target.value}",
                details={"status": current.value, "target": target.value},
            )

        try:
            applied = await SubscriptionRepository.transition(db, subscription.id, current, target, **values)
        except IntegrityError:
            # Lost a race against another path producing an active subscription
            raise ConflictException(ACTIVE_SUBSCRIPTION_CONFLICT)

        if not applied:
            raise InvalidStateException(
                "Subscription status changed concurrently",
                details={"expected": current.value},
            )
        return await SubscriptionService._load(db, subscription.id)

    @staticmethod
    async def _create_remote(
        db: AsyncSession,
        gateway: PaymentGateway,
        actor: ActorIdentity,
        subscription: Subscription,
        billing_cycle: BillingCycle,
    ) -> None:
        # free plans have nothing to bill at the processor
        if subscription.amount <= 0:
            return
        try:
            result = await gateway.create_remote_subscription(
                str(subscription.plan_id),
                GatewayCustomer(id=str(actor.id), email=actor.email),
                PaymentMethod(subscription.payment_method).value,
                subscription.amount,
                subscription.currency,
                billing_cycle,
            )
        except GatewayUnavailableException:
            logger.warning(f"Subscription {subscription.id} not mirrored at the gateway: unavailable")
            return
        if not result.success or not result.reference:
            logger.warning(
                f"Subscription {subscription.id} not mirrored at the gateway: {result.failure_reason}"
            )
            return
        await SubscriptionRepository.set_gateway_subscription_id(db, subscription.id, result.reference)

    @staticmethod
    async def _cancel_remote(gateway: PaymentGateway, subscription: Subscription) -> None:
        try:
            result = await gateway.cancel_remote_subscription(subscription.gateway_subscription_id)
        except GatewayUnavailableException:
            logger.warning(
                f"Remote subscription {subscription.gateway_subscription_id} not cancelled: gateway unavailable"
            )
            return
        if not result.success:
            logger.warning(
                f"Remote subscription {subscription.gateway_subscription_id} not cancelled: {result.failure_reason}"
            )

    @staticmethod
    async def create(
        db: AsyncSession,
        actor: ActorIdentity,
        plan_id: uuid.UUID,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        gateway: Optional[PaymentGateway] = None,
    ) -> Subscription:
        """
        Subscribe the actor to a plan.

        Business Rules:
        - The plan must exist and be active, otherwise PlanNotFound
        - The actor must not already hold an active subscription (Conflict)
        - start_date = now, end_date = now + one billing period,
          next_billing_date = end_date
        - The plan's trial_days, if any, set trial_end

        Args:
            db: Database session
            actor: Authenticated identity subscribing
            plan_id: ID of the plan to subscribe to
            payment_method: Instrument recorded on the subscription
            gateway: Processor to mirror the subscription at, if any

        Returns:
            The created Subscription with its plan loaded
        """
        plan = await PlanRepository.get_by_id(db, plan_id)
        if plan is None or not plan.is_active:
            raise PlanNotFoundException()

        await SubscriptionService._ensure_no_other_active(db, actor.id)

        now = utcnow()
        end_date = next_billing_date(plan.billing_cycle, now)
        subscription = Subscription(
            user_id=actor.id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=end_date,
            next_billing_date=end_date,
            amount=plan.price,
            currency=plan.currency,
            payment_method=payment_method,
            trial_end=now + timedelta(days=plan.trial_days) if plan.trial_days else None,
        )

        try:
            subscription = await SubscriptionRepository.create(db, subscription)
        except IntegrityError:
            raise ConflictException(ACTIVE_SUBSCRIPTION_CONFLICT)

        if gateway is not None:
            await SubscriptionService._create_remote(db, gateway, actor, subscription, plan.billing_cycle)

        return await SubscriptionService._load(db, subscription.id)

    @staticmethod
    async def get(db: AsyncSession, actor: ActorIdentity, subscription_id: uuid.UUID) -> Subscription:
        subscription = await SubscriptionService._load(db, subscription_id)
        ensure_access(actor, subscription.user_id)
        return subscription

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
        return await SubscriptionRepository.list_for_user(db, user_id)

    @staticmethod
    async def list_all(db: AsyncSession) -> list[Subscription]:
        return await SubscriptionRepository.list_all(db)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        actor: ActorIdentity,
        subscription_id: uuid.UUID,
        reason: Optional[str] = None,
        gateway: Optional[PaymentGateway] = None,
    ) -> Subscription:
        """Cancel an active subscription. An already-cancelled one is rejected, not re-stamped."""
        subscription = await SubscriptionService.get(db, actor, subscription_id)
        cancelled = await SubscriptionService._transition(
            db,
            subscription,
            SubscriptionStatus.CANCELLED,
            cancelled_at=utcnow(),
            cancellation_reason=reason or "User requested cancellation",
        )
        logger.info(f"Subscription {subscription_id} cancelled by {actor.id}")
        if gateway is not None and cancelled.gateway_subscription_id:
            await SubscriptionService._cancel_remote(gateway, cancelled)
        return cancelled

    @staticmethod
    async def reactivate(db: AsyncSession, actor: ActorIdentity, subscription_id: uuid.UUID) -> Subscription:
        """Bring a cancelled subscription back, provided no other one is active."""
        subscription = await SubscriptionService.get(db, actor, subscription_id)
        if SubscriptionStatus(subscription.status) != SubscriptionStatus.CANCELLED:
            raise InvalidStateException(
                "Only cancelled subscriptions can be reactivated",
                details={"status": SubscriptionStatus(subscription.status).value},
            )
        await SubscriptionService._ensure_no_other_active(db, subscription.user_id, exclude_id=subscription.id)
        reactivated = await SubscriptionService._transition(
            db,
            subscription,
            SubscriptionStatus.ACTIVE,
            cancelled_at=None,
            cancellation_reason=None,
        )
        logger.info(f"Subscription {subscription_id} reactivated by {actor.id}")
        return reactivated

    @staticmethod
    async def suspend(
        db: AsyncSession,
        actor: ActorIdentity,
        subscription_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Subscription:
        """Administrative hold on an active subscription."""
        SessionAuthority.require_role(actor, UserRole.ADMIN)
        subscription = await SubscriptionService._load(db, subscription_id)
        suspended = await SubscriptionService._transition(
            db, subscription, SubscriptionStatus.SUSPENDED, suspension_reason=reason or "Administrative hold"
        )
        logger.info(f"Subscription {subscription_id} suspended by {actor.id}: {suspended.suspension_reason}")
        return suspended

    @staticmethod
    async def resume(db: AsyncSession, actor: ActorIdentity, subscription_id: uuid.UUID) -> Subscription:
        """Lift an administrative hold, provided no other subscription became active meanwhile."""
        SessionAuthority.require_role(actor, UserRole.ADMIN)
        subscription = await SubscriptionService._load(db, subscription_id)
        if SubscriptionStatus(subscription.status) != SubscriptionStatus.SUSPENDED:
            raise InvalidStateException(
                "Only suspended subscriptions can be resumed",
                details={"status": SubscriptionStatus(subscription.status).value},
            )
        await SubscriptionService._ensure_no_other_active(db, subscription.user_id, exclude_id=subscription.id)
        resumed = await SubscriptionService._transition(
            db, subscription, SubscriptionStatus.ACTIVE, suspension_reason=None
        )
        logger.info(f"Subscription {subscription_id} resumed by {actor.id}")
        return resumed

    @staticmethod
    async def expire(
        db: AsyncSession, subscription_id: uuid.UUID, now: Optional[datetime] = None
    ) -> Subscription:
        """Mark an active subscription expired once its end date has passed without renewal."""
        now = ensure_utc(now) or utcnow()
        subscription = await SubscriptionService._load(db, subscription_id)
        if ensure_utc(subscription.end_date) >= now:
            raise InvalidStateException(
                "Subscription has not reached its end date",
                details={"end_date": ensure_utc(subscription.end_date).isoformat()},
            )
        return await SubscriptionService._transition(db, subscription, SubscriptionStatus.EXPIRED)

    @staticmethod
    async def expire_due(db: AsyncSession, now: Optional[datetime] = None) -> list[Subscription]:
        """Expire every active subscription whose end date is in the past.

        Entry point for an external scheduler; subscriptions that changed
        status between the query and the update are skipped.
        """
        now = ensure_utc(now) or utcnow()
        expired: list[Subscription] = []
        for subscription in await SubscriptionRepository.list_overdue_active(db, now):
            try:
                expired.append(await SubscriptionService.expire(db, subscription.id, now=now))
            except InvalidStateException:
                logger.info(f"Skipping expiry of {subscription.id}: status changed")
        if expired:
            logger.info(f"Expired {len(expired)} subscriptions")
        return expired
