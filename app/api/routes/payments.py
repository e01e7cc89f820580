"""Payment routes: charges, refunds and the payment ledger."""

from typing import Optional

from fastapi import APIRouter

from app.api.deps import AdminActor, CurrentActor, DB, Gateway, parse_uuid
from app.schemas.payments import PaymentProcessRequest, PaymentRefundRequest, PaymentResponse
from app.services.payment_service import PaymentService
from app.utils.envelopes import api_list, api_success

router = APIRouter(tags=["payments"])


def _dump(payment) -> dict:
    return PaymentResponse.model_validate(payment).model_dump(mode="json")


@router.post("/payments/process", response_model=dict, status_code=201)
async def process_payment(payload: PaymentProcessRequest, actor: CurrentActor, db: DB, gateway: Gateway):
    """Charge the current user for one of their subscriptions."""
    service = PaymentService(db, gateway)
    payment = await service.charge(
        actor,
        parse_uuid(payload.subscription_id, "subscription_id"),
        payload.amount,
        payload.payment_method,
        payload.description,
    )
    return api_success(_dump(payment))


@router.get("/payments/my", response_model=dict)
async def list_my_payments(actor: CurrentActor, db: DB, gateway: Gateway):
    payments = await PaymentService(db, gateway).list_for_user(actor.id)
    return api_list([_dump(p) for p in payments])


@router.get("/payments/admin/all", response_model=dict)
async def list_all_payments(_: AdminActor, db: DB, gateway: Gateway):
    payments = await PaymentService(db, gateway).list_all()
    return api_list([_dump(p) for p in payments])


@router.get("/payments/admin/pending", response_model=dict)
async def list_stale_pending_payments(_: AdminActor, db: DB, gateway: Gateway):
    """Charges still pending past the reconciliation threshold."""
    payments = await PaymentService(db, gateway).list_stale_pending()
    return api_list([_dump(p) for p in payments])


@router.get("/payments/{payment_id}", response_model=dict)
async def get_payment(payment_id: str, actor: CurrentActor, db: DB, gateway: Gateway):
    payment = await PaymentService(db, gateway).get(actor, parse_uuid(payment_id, "payment_id"))
    return api_success(_dump(payment))


@router.post("/payments/{payment_id}/refund", response_model=dict)
async def refund_payment(
    payment_id: str,
    actor: CurrentActor,
    db: DB,
    gateway: Gateway,
    payload: Optional[PaymentRefundRequest] = None,
):
    """Refund a completed payment. Omitting the amount refunds it in full."""
    payment = await PaymentService(db, gateway).refund(
        actor,
        parse_uuid(payment_id, "payment_id"),
        payload.amount if payload else None,
        payload.reason if payload else None,
    )
    return api_success(_dump(payment))
