"""Plan catalogue routes. Reads are public; writes need an admin."""

from fastapi import APIRouter

from app.api.deps import AdminActor, DB, parse_uuid
from app.schemas.plans import PlanCreateRequest, PlanResponse, PlanUpdateRequest
from app.services.plan_service import PlanService
from app.utils.envelopes import api_list, api_success

router = APIRouter(tags=["plans"])


def _dump(plan) -> dict:
    return PlanResponse.model_validate(plan).model_dump(mode="json")


@router.get("/plans", response_model=dict)
async def list_plans(db: DB):
    """Active plans, cheapest first within the same sort order."""
    plans = await PlanService.list_active(db)
    return api_list([_dump(plan) for plan in plans])


@router.get("/plans/admin/all", response_model=dict)
async def list_all_plans(_: AdminActor, db: DB):
    """Every plan, including deactivated ones."""
    plans = await PlanService.list_all(db)
    return api_list([_dump(plan) for plan in plans])


@router.get("/plans/{plan_id}", response_model=dict)
async def get_plan(plan_id: str, db: DB):
    plan = await PlanService.get(db, parse_uuid(plan_id, "plan_id"))
    return api_success(_dump(plan))


@router.post("/plans", response_model=dict, status_code=201)
async def create_plan(payload: PlanCreateRequest, _: AdminActor, db: DB):
    plan = await PlanService.create(db, payload)
    return api_success(_dump(plan))


@router.put("/plans/{plan_id}", response_model=dict)
async def update_plan(plan_id: str, payload: PlanUpdateRequest, _: AdminActor, db: DB):
    plan = await PlanService.update(db, parse_uuid(plan_id, "plan_id"), payload)
    return api_success(_dump(plan))


@router.delete("/plans/{plan_id}", response_model=dict)
async def delete_plan(plan_id: str, _: AdminActor, db: DB):
    """Plans stay referenced by subscriptions, so deletion deactivates them."""
    plan = await PlanService.deactivate(db, parse_uuid(plan_id, "plan_id"))
    return api_success(_dump(plan))
