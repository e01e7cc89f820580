"""Subscription lifecycle routes."""

from typing import Optional

from fastapi import APIRouter

from app.api.deps import AdminActor, CurrentActor, DB, Gateway, parse_uuid
from app.schemas.subscriptions import (
    SubscriptionCancelRequest,
    SubscriptionCreateRequest,
    SubscriptionResponse,
    SubscriptionSuspendRequest,
)
from app.services.subscription_service import SubscriptionService
from app.utils.envelopes import api_list, api_success

router = APIRouter(tags=["subscriptions"])


def _dump(subscription) -> dict:
    return SubscriptionResponse.model_validate(subscription).model_dump(mode="json")


@router.post("/subscriptions", response_model=dict, status_code=201)
async def create_subscription(payload: SubscriptionCreateRequest, actor: CurrentActor, db: DB, gateway: Gateway):
    """Subscribe the current user to a plan."""
    subscription = await SubscriptionService.create(
        db, actor, parse_uuid(payload.plan_id, "plan_id"), payload.payment_method, gateway=gateway
    )
    return api_success(_dump(subscription))


@router.get("/subscriptions/my", response_model=dict)
async def list_my_subscriptions(actor: CurrentActor, db: DB):
    subscriptions = await SubscriptionService.list_for_user(db, actor.id)
    return api_list([_dump(s) for s in subscriptions])


@router.get("/subscriptions/admin/all", response_model=dict)
async def list_all_subscriptions(_: AdminActor, db: DB):
    subscriptions = await SubscriptionService.list_all(db)
    return api_list([_dump(s) for s in subscriptions])


@router.get("/subscriptions/{subscription_id}", response_model=dict)
async def get_subscription(subscription_id: str, actor: CurrentActor, db: DB):
    subscription = await SubscriptionService.get(db, actor, parse_uuid(subscription_id, "subscription_id"))
    return api_success(_dump(subscription))


@router.post("/subscriptions/{subscription_id}/cancel", response_model=dict)
async def cancel_subscription(
    subscription_id: str,
    actor: CurrentActor,
    db: DB,
    gateway: Gateway,
    payload: Optional[SubscriptionCancelRequest] = None,
):
    subscription = await SubscriptionService.cancel(
        db,
        actor,
        parse_uuid(subscription_id, "subscription_id"),
        payload.reason if payload else None,
        gateway=gateway,
    )
    return api_success(_dump(subscription))


@router.post("/subscriptions/{subscription_id}/reactivate", response_model=dict)
async def reactivate_subscription(subscription_id: str, actor: CurrentActor, db: DB):
    subscription = await SubscriptionService.reactivate(db, actor, parse_uuid(subscription_id, "subscription_id"))
    return api_success(_dump(subscription))


@router.post("/subscriptions/{subscription_id}/suspend", response_model=dict)
async def suspend_subscription(
    subscription_id: str,
    actor: AdminActor,
    db: DB,
    payload: Optional[SubscriptionSuspendRequest] = None,
):
    """Administrative hold."""
    subscription = await SubscriptionService.suspend(
        db, actor, parse_uuid(subscription_id, "subscription_id"), payload.reason if payload else None
    )
    return api_success(_dump(subscription))


@router.post("/subscriptions/{subscription_id}/resume", response_model=dict)
async def resume_subscription(subscription_id: str, actor: AdminActor, db: DB):
    subscription = await SubscriptionService.resume(db, actor, parse_uuid(subscription_id, "subscription_id"))
    return api_success(_dump(subscription))
