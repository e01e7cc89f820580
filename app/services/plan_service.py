"""Service layer for plan administration and the public plan catalogue."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.database.plan_repo import PlanRepository
from app.models.plan import Plan
from app.schemas.plans import PlanCreateRequest, PlanUpdateRequest
from app.utils.exceptions import PlanNotFoundException

logger = logging.getLogger(__name__)


class PlanService:
    """Service for plan business logic."""

    @staticmethod
    async def list_active(db: AsyncSession) -> list[Plan]:
        return await PlanRepository.list_plans(db)

    @staticmethod
    async def list_all(db: AsyncSession) -> list[Plan]:
        return await PlanRepository.list_plans(db, include_inactive=True)

    @staticmethod
    async def get(db: AsyncSession, plan_id: uuid.UUID) -> Plan:
        plan = await PlanRepository.get_by_id(db, plan_id)
        if plan is None:
            raise PlanNotFoundException()
        return plan

    @staticmethod
    async def create(db: AsyncSession, payload: PlanCreateRequest) -> Plan:
        data = payload.model_dump()
        plan = Plan(**data, is_active=True)
        plan = await PlanRepository.create(db, plan)
        logger.info(f"Plan created: {plan.id} ({plan.name})")
        return plan

    @staticmethod
    async def update(db: AsyncSession, plan_id: uuid.UUID, payload: PlanUpdateRequest) -> Plan:
        """Apply an administrative edit.

        Existing subscriptions keep the price and currency they were created
        with; only new subscriptions see the change.
        """
        plan = await PlanService.get(db, plan_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        for field_name, value in changes.items():
            setattr(plan, field_name, value)
        if changes:
            plan = await PlanRepository.save(db, plan)
            logger.info(f"Plan updated: {plan.id} fields={sorted(changes)}")
        return plan

    @staticmethod
    async def deactivate(db: AsyncSession, plan_id: uuid.UUID) -> Plan:
        """Plans are referenced by subscriptions, so removal is a deactivation."""
        plan = await PlanService.get(db, plan_id)
        if plan.is_active:
            plan.is_active = False
            plan = await PlanRepository.save(db, plan)
            logger.info(f"Plan deactivated: {plan.id}")
        return plan
