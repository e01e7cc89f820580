"""FastAPI dependencies for authentication, database sessions and the payment gateway."""

import uuid
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ActorIdentity
from app.core.db import get_db
from app.integrations.payment_gateway import PaymentGateway, get_payment_gateway
from app.models.billing_enums import UserRole
from app.services.session_service import SessionAuthority, session_authority
from app.utils.exceptions import UnauthorizedException, ValidationException

bearer_scheme = HTTPBearer(auto_error=False)


def get_session_authority() -> SessionAuthority:
    return session_authority


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> str:
    """Raw bearer token from the Authorization header."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedException("access token required")
    return credentials.credentials


async def get_current_actor(
    token: Annotated[str, Depends(get_bearer_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
    authority: Annotated[SessionAuthority, Depends(get_session_authority)],
) -> ActorIdentity:
    """Get the authenticated identity for the request's access token."""
    return await authority.verify(db, token)


async def require_admin(
    actor: Annotated[ActorIdentity, Depends(get_current_actor)],
) -> ActorIdentity:
    SessionAuthority.require_role(actor, UserRole.ADMIN)
    return actor


def parse_uuid(value: str, label: str = "id") -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationException(f"Invalid {label}", details={label: value})


# Convenience type aliases
CurrentActor = Annotated[ActorIdentity, Depends(get_current_actor)]
AdminActor = Annotated[ActorIdentity, Depends(require_admin)]
BearerToken = Annotated[str, Depends(get_bearer_token)]
Authority = Annotated[SessionAuthority, Depends(get_session_authority)]
Gateway = Annotated[PaymentGateway, Depends(get_gateway)]
DB = Annotated[AsyncSession, Depends(get_db)]
