"""Health check endpoints for monitoring."""

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import DB, Gateway
from app.core.config import settings
from app.utils.envelopes import api_success
from app.utils.exceptions import GatewayUnavailableException

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=dict)
async def health_check(db: DB, gateway: Gateway):
    """Health check endpoint for load balancers and monitoring."""
    # Test database connectivity
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        db_status = "unhealthy"

    try:
        gateway_status = (await gateway.get_status()).get("status", "unknown")
    except GatewayUnavailableException:
        gateway_status = "unavailable"

    health_data = {
        "status": "ok" if db_status == "healthy" and gateway_status == "operational" else "degraded",
        "service": settings.APP_NAME,
        "database": db_status,
        "payment_gateway": gateway_status,
    }

    return api_success(health_data)


@router.get("/health/ready", response_model=dict)
async def readiness_check(db: DB):
    """Kubernetes readiness probe."""
    try:
        await db.execute(text("SELECT 1"))
        return api_success({"ready": True})
    except SQLAlchemyError:
        return api_success({"ready": False})


@router.get("/health/live", response_model=dict)
async def liveness_check():
    """Kubernetes liveness probe."""
    return api_success({"alive": True})
