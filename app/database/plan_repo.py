"""Repository layer for plan database operations."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.plan import Plan


class PlanRepository:
    """Repository for plan database operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, plan_id: uuid.UUID) -> Optional[Plan]:
        return await db.get(Plan, plan_id)

    @staticmethod
    async def get_by_name(db: AsyncSession, name: str) -> Optional[Plan]:
        result = await db.execute(select(Plan).where(Plan.name == name))
        return result.scalars().first()

    @staticmethod
    async def list_plans(db: AsyncSession, include_inactive: bool = False) -> list[Plan]:
        """List plans ordered for display: sort_order first, then price."""
        stmt = select(Plan)
        if not include_inactive:
            stmt = stmt.where(Plan.is_active.is_(True))
        result = await db.execute(stmt.order_by(Plan.sort_order.asc(), Plan.price.asc(), Plan.name.asc()))
        return list(result.scalars().all())

    @staticmethod
    async def create(db: AsyncSession, plan: Plan) -> Plan:
        db.add(plan)
        await db.commit()
        await db.refresh(plan)
        return plan

    @staticmethod
    async def save(db: AsyncSession, plan: Plan) -> Plan:
        await db.commit()
        await db.refresh(plan)
        return plan
