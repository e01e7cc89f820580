"""Inbound payment gateway webhooks. Authenticated by signature, not bearer token."""

from typing import Optional

from fastapi import APIRouter, Header, Request

from app.api.deps import DB, Gateway
from app.services.webhook_service import WebhookService
from app.utils.envelopes import api_success

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/payment-gateway", response_model=dict)
async def payment_gateway_webhook(
    request: Request,
    db: DB,
    gateway: Gateway,
    x_gateway_signature: Optional[str] = Header(None),
):
    # The signature covers the exact bytes sent, so the body is read raw
    body = await request.body()
    result = await WebhookService(db, gateway).handle(body, x_gateway_signature)
    return api_success(result)
