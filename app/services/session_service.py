"""Session authority: issues, verifies and revokes bearer tokens.

Access tokens carry the user id, email and role at issuance time; refresh
tokens carry only the user id and a type marker and are signed with a
separate secret. Tokens are stateless; the only server-side state is the
revocation registry.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ActorIdentity
from app.core.revocation import TokenRevocationRegistry, revocation_registry
from app.core.security import (
    ACCESS_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    read_expiry,
)
from app.database.user_repo import UserRepository
from app.models.billing_enums import UserRole
from app.models.models import User
from app.utils.exceptions import (
    ForbiddenException,
    InvalidTokenException,
    TokenExpiredException,
    TokenRevokedException,
    UnauthorizedException,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "bearer"


class SessionAuthority:
    """Issues, verifies and revokes session credentials."""

    def __init__(self, registry: TokenRevocationRegistry):
        self.registry = registry

    def issue(self, user: User) -> TokenPair:
        access_token, expires_at = create_access_token(
            {"sub": str(user.id), "email": user.email, "role": UserRole(user.role).value}
        )
        refresh_token, _ = create_refresh_token(str(user.id))
        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)

    async def verify(self, db: AsyncSession, token: str) -> ActorIdentity:
        """Resolve an access token to the identity it was issued for.

        Raises:
            TokenRevokedException: token is in the revocation registry
            TokenExpiredException: token is past its exp claim
            InvalidTokenException: bad signature, malformed claims, or not an access token
            UnauthorizedException: user no longer exists or is deactivated
        """
        if self.registry.is_revoked(token):
            raise TokenRevokedException()

        try:
            payload = decode_access_token(token)
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.PyJWTError:
            raise InvalidTokenException()

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidTokenException()

        try:
            user_id = uuid.UUID(str(payload["sub"]))
            role = UserRole(payload.get("role"))
        except ValueError:
            raise InvalidTokenException()

        user = await UserRepository.get_by_id(db, user_id)
        if user is None:
            raise UnauthorizedException("User not found", code="USER_NOT_FOUND")
        if not user.is_active:
            raise UnauthorizedException("User account is inactive", code="USER_INACTIVE")

        return ActorIdentity(id=user_id, email=payload.get("email", user.email), role=role)

    def revoke(self, token: str) -> None:
        self.registry.revoke(token, expires_at=read_expiry(token))
        logger.info("Token revoked")

    def is_revoked(self, token: str) -> bool:
        return self.registry.is_revoked(token)

    @staticmethod
    def require_role(identity: ActorIdentity, role: UserRole, message: Optional[str] = None) -> None:
        if identity.role != role:
            raise ForbiddenException(message or f"{role.value.capitalize()} access required")


session_authority = SessionAuthority(revocation_registry)
