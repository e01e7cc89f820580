"""Repository layer for subscription-related database operations.

This module contains ONLY database access logic - no business rules.
Status changes are written as compare-and-swap updates: the row is only
touched if it still holds the expected status, and the caller learns whether
it won.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.billing_enums import SubscriptionStatus
from app.models.subscription import Subscription
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """Repository for subscription database operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, subscription_id: uuid.UUID) -> Optional[Subscription]:
        """Fetch a subscription with its plan, refreshing any copy already in the session."""
        result = await db.execute(
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(Subscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_gateway_id(db: AsyncSession, gateway_subscription_id: str) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(Subscription.gateway_subscription_id == gateway_subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_active_for_user(
        db: AsyncSession, user_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None
    ) -> Optional[Subscription]:
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
        )
        if exclude_id is not None:
            stmt = stmt.where(Subscription.id != exclude_id)
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
        result = await db.execute(
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> list[Subscription]:
        result = await db.execute(
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .order_by(Subscription.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_overdue_active(db: AsyncSession, now: datetime) -> list[Subscription]:
        result = await db.execute(
            select(Subscription).where(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.end_date < now,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def create(db: AsyncSession, subscription: Subscription) -> Subscription:
        """Insert a subscription. IntegrityError from the one-active index propagates."""
        db.add(subscription)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(f"Subscription created: {subscription.id} for user {subscription.user_id}")
        return subscription

    @staticmethod
    async def transition(
        db: AsyncSession,
        subscription_id: uuid.UUID,
        expected: SubscriptionStatus,
        target: SubscriptionStatus,
        **values: Any,
    ) -> bool:
        """Move a subscription from `expected` to `target`. Returns False if the row was not in `expected`."""
        try:
            result = await db.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id, Subscription.status == expected)
                .values(status=target, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        changed = result.rowcount == 1
        logger.info(
            f"Subscription transition {subscription_id}: {expected.value} -> {target.value} "
            f"({'applied' if changed else 'skipped'})"
        )
        return changed

    @staticmethod
    async def set_gateway_subscription_id(
        db: AsyncSession, subscription_id: uuid.UUID, gateway_subscription_id: str
    ) -> None:
        try:
            await db.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id)
                .values(gateway_subscription_id=gateway_subscription_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
