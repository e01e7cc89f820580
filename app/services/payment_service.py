"""Service layer for payment business logic.

This module owns the payment state machine:

    pending   -> completed | failed
    completed -> refunded

Key Concepts:
- Charge orchestration: a pending ledger entry is written before the gateway
  is called, then settled to completed or failed from the gateway's answer.
- At most one charge in flight per subscription: a keyed lock is held across
  the gateway call; a concurrent attempt fails fast with CHARGE_IN_PROGRESS.
- Unresolved charges: if the gateway times out the entry stays pending and is
  reported by list_stale_pending for reconciliation (or resolved by a
  payment.succeeded / payment.failed webhook).
- Refund legality: only completed payments, for at most the original amount,
  at most once.
"""

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ActorIdentity, ensure_access, is_owner
from app.core.config import settings
from app.core.locks import KeyedLockRegistry, charge_locks, refund_locks
from app.database.payment_repo import PaymentRepository
from app.database.subscription_repo import SubscriptionRepository
from app.integrations.payment_gateway import GatewayCustomer, GatewayResult, PaymentGateway
from app.models.billing_enums import PaymentMethod, PaymentStatus
from app.models.payment import Payment
from app.utils.exceptions import (
    DatabaseException,
    ForbiddenException,
    GatewayDeclinedException,
    GatewayUnavailableException,
    InvalidAmountException,
    InvalidStateException,
    PaymentNotFoundException,
    SubscriptionNotFoundException,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class PaymentService:
    """Service layer for payment business logic."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        charge_lock_registry: Optional[KeyedLockRegistry] = None,
        refund_lock_registry: Optional[KeyedLockRegistry] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.charge_locks = charge_lock_registry or charge_locks
        self.refund_locks = refund_lock_registry or refund_locks

    async def _reload(self, payment_id: uuid.UUID) -> Payment:
        payment = await PaymentRepository.get_by_id(self.db, payment_id)
        if payment is None:
            raise PaymentNotFoundException()
        return payment

    async def get(self, actor: ActorIdentity, payment_id: uuid.UUID) -> Payment:
        payment = await self._reload(payment_id)
        ensure_access(actor, payment.user_id)
        return payment

    async def list_for_user(self, user_id: uuid.UUID) -> list[Payment]:
        return await PaymentRepository.list_for_user(self.db, user_id)

    async def list_all(self) -> list[Payment]:
        return await PaymentRepository.list_all(self.db)

    async def list_stale_pending(self, older_than: Optional[timedelta] = None) -> list[Payment]:
        """Pending payments older than the threshold: charges whose outcome was never recorded."""
        older_than = older_than or timedelta(minutes=settings.STALE_PENDING_MINUTES)
        stale = await PaymentRepository.list_pending_before(self.db, utcnow() - older_than)
        if stale:
            logger.warning(f"{len(stale)} payments pending for more than {older_than}")
        return stale

    async def charge(
        self,
        actor: ActorIdentity,
        subscription_id: uuid.UUID,
        amount: Decimal,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        description: Optional[str] = None,
    ) -> Payment:
        """
        Charge the actor for one of their subscriptions.

        Business Rules:
        - The subscription must exist (SubscriptionNotFound) and belong to the
          actor; admins cannot charge on behalf of a user (Forbidden)
        - Amount and method are validated before anything is written
        - Only one charge per subscription may be in flight (Conflict)

        Args:
            actor: Authenticated identity paying
            subscription_id: Subscription being paid for
            amount: Amount in the subscription's currency
            payment_method: Instrument to charge
            description: Free-text ledger description

        Returns:
            The completed Payment with its subscription loaded

        Raises:
            GatewayDeclinedException: processor declined; the payment is recorded as failed
            GatewayUnavailableException: processor timed out; the payment stays pending
        """
        subscription = await SubscriptionRepository.get_by_id(self.db, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundException()
        if not is_owner(actor, subscription.user_id):
            raise ForbiddenException("Access denied")

        method = PaymentMethod(payment_method).value if payment_method else None
        customer = GatewayCustomer(id=str(actor.id), email=actor.email)
        self.gateway.validate_charge(amount, method, customer)

        async with self.charge_locks.claim(subscription.id):
            payment = await PaymentRepository.create_pending(
                self.db,
                Payment(
                    user_id=actor.id,
                    subscription_id=subscription.id,
                    amount=Decimal(amount),
                    currency=subscription.currency,
                    payment_method=PaymentMethod(method),
                    description=description or "Payment for subscription",
                ),
            )
            payment_id = payment.id

            try:
                result = await self.gateway.charge(
                    Decimal(amount), subscription.currency, method, customer, description, reference=str(payment_id)
                )
            except GatewayUnavailableException as exc:
                logger.warning(f"Payment {payment_id} left pending: gateway unavailable")
                exc.details = {**(exc.details or {}), "payment_id": str(payment_id)}
                raise

            await self._settle(payment_id, result)
            payment = await self._reload(payment_id)

        if payment.status == PaymentStatus.FAILED:
            raise GatewayDeclinedException(
                payment.failure_reason or "Payment declined",
                details={"payment_id": str(payment.id), "failure_reason": payment.failure_reason},
            )
        return payment

    async def _settle(self, payment_id: uuid.UUID, result: GatewayResult) -> None:
        target = PaymentStatus.COMPLETED if result.success else PaymentStatus.FAILED
        values = {
            "gateway_transaction_id": result.reference,
            "processed_at": result.processed_at or utcnow(),
        }
        if not result.success:
            values["failure_reason"] = result.failure_reason or "Declined by processor"

        try:
            applied = await PaymentRepository.transition(
                self.db, payment_id, PaymentStatus.PENDING, target, **values
            )
        except DBAPIError:
            logger.error(
                f"Payment {payment_id} settled as {target.value} at the gateway "
                f"(txn {result.reference}) but could not be persisted; left pending",
                exc_info=True,
            )
            raise DatabaseException(
                "Payment outcome could not be recorded",
                details={"payment_id": str(payment_id)},
            )

        if not applied:
            logger.info(f"Payment {payment_id} was resolved elsewhere before settlement")

    async def refund(
        self,
        actor: ActorIdentity,
        payment_id: uuid.UUID,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        Refund a completed payment, fully (default) or partially.

        Raises:
            InvalidStateException: payment is not completed
            InvalidAmountException: amount is not positive or exceeds the original charge
            GatewayDeclinedException: processor refused; the payment stays completed
        """
        payment = await self.get(actor, payment_id)

        async with self.refund_locks.claim(payment.id):
            payment = await self._reload(payment.id)
            if PaymentStatus(payment.status) != PaymentStatus.COMPLETED:
                raise InvalidStateException(
                    "Payment must be completed to refund",
                    details={"status": PaymentStatus(payment.status).value},
                )

            refund_amount = payment.amount if amount is None else Decimal(amount)
            if refund_amount <= 0:
                raise InvalidAmountException("Refund amount must be positive")
            if refund_amount > payment.amount:
                raise InvalidAmountException(
                    "Refund amount exceeds the original payment",
                    details={"amount": str(payment.amount), "requested": str(refund_amount)},
                )

            result = await self.gateway.refund(payment.gateway_transaction_id, refund_amount, reason)
            if not result.success:
                raise GatewayDeclinedException(
                    result.failure_reason or "Refund declined",
                    details={"payment_id": str(payment.id), "failure_reason": result.failure_reason},
                )

            applied = await PaymentRepository.transition(
                self.db,
                payment.id,
                PaymentStatus.COMPLETED,
                PaymentStatus.REFUNDED,
                refunded_at=result.processed_at or utcnow(),
                refund_amount=refund_amount,
            )
            if not applied:
                raise InvalidStateException("Payment status changed concurrently")

            logger.info(f"Payment {payment.id} refunded ({refund_amount} {payment.currency}) by {actor.id}")
            return await self._reload(payment.id)
