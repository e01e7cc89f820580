"""Repository layer for payment ledger operations.

Status changes are compare-and-swap updates guarded by the expected current
status, and only edges in PAYMENT_TRANSITIONS are accepted: failed and
refunded payments never move again. Writes are retried on transient storage failures: a
charge the processor already settled must not be stranded as pending.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.models.billing_enums import PaymentStatus, can_transition_payment
from app.models.payment import Payment
from app.models.subscription import Subscription
from app.utils.exceptions import InvalidStateException
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

transient_storage_retry = retry(
    retry=retry_if_exception_type((OperationalError, InterfaceError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _with_subscription(stmt):
    return stmt.options(selectinload(Payment.subscription).selectinload(Subscription.plan))


class PaymentRepository:
    """Repository for payment database operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, payment_id: uuid.UUID) -> Optional[Payment]:
        result = await db.execute(
            _with_subscription(select(Payment))
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_transaction_id(db: AsyncSession, transaction_id: str) -> Optional[Payment]:
        result = await db.execute(
            _with_subscription(select(Payment))
            .where(Payment.gateway_transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Payment]:
        result = await db.execute(
            _with_subscription(select(Payment))
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> list[Payment]:
        result = await db.execute(_with_subscription(select(Payment)).order_by(Payment.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def list_pending_before(db: AsyncSession, cutoff: datetime) -> list[Payment]:
        result = await db.execute(
            _with_subscription(select(Payment))
            .where(Payment.status == PaymentStatus.PENDING, Payment.created_at < cutoff)
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    @transient_storage_retry
    async def create_pending(db: AsyncSession, payment: Payment) -> Payment:
        payment.status = PaymentStatus.PENDING
        db.add(payment)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(f"Pending payment recorded: {payment.id} (subscription {payment.subscription_id})")
        return payment

    @staticmethod
    @transient_storage_retry
    async def transition(
        db: AsyncSession,
        payment_id: uuid.UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        **values: Any,
    ) -> bool:
        """Move a payment from `expected` to `target`. Returns False if the row was not in `expected`."""
        if not can_transition_payment(expected, target):
            raise InvalidStateException(
                f"Cannot change payment from {expected.value} to {target.value}",
                details={"status": expected.value, "target": target.value},
            )
        try:
            result = await db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == expected)
                .values(status=target, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        changed = result.rowcount == 1
        logger.info(
            f"Payment transition {payment_id}: {expected.value} -> {target.value} "
            f"({'applied' if changed else 'skipped'})"
        )
        return changed
