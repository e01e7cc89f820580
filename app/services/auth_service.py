"""Authentication service for signup, login, profile and password changes."""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ActorIdentity
from app.core.security import hash_password, verify_password
from app.database.user_repo import UserRepository
from app.models.billing_enums import UserRole
from app.models.models import User
from app.services.session_service import SessionAuthority, TokenPair
from app.utils.exceptions import (
    ConflictException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    async def create_user(
        db: AsyncSession,
        email: str,
        password: str,
        name: Optional[str] = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Create a new user with email/password."""
        existing = await UserRepository.get_by_email(db, email)
        if existing:
            raise ConflictException("User already exists")

        try:
            user = await UserRepository.create(
                db,
                email=email,
                password_hash=hash_password(password),
                name=name or email.split("@")[0],
                role=role,
            )
        except IntegrityError:
            await db.rollback()
            raise ConflictException("User already exists")

        logger.info(f"User registered: {user.id}")
        return user

    @staticmethod
    async def register(
        db: AsyncSession,
        authority: SessionAuthority,
        email: str,
        password: str,
        name: Optional[str] = None,
    ) -> tuple[User, TokenPair]:
        user = await AuthService.create_user(db, email=email, password=password, name=name)
        return user, authority.issue(user)

    @staticmethod
    async def authenticate_email(db: AsyncSession, email: str, password: str) -> User:
        """Authenticate user with email and password."""
        user = await UserRepository.get_by_email(db, email)
        if not user or not verify_password(password, user.password_hash):
            raise UnauthorizedException("Invalid credentials", code="INVALID_CREDENTIALS")
        if not user.is_active:
            raise UnauthorizedException("Account is inactive", code="USER_INACTIVE")
        return user

    @staticmethod
    async def login(
        db: AsyncSession, authority: SessionAuthority, email: str, password: str
    ) -> tuple[User, TokenPair]:
        user = await AuthService.authenticate_email(db, email, password)
        logger.info(f"User logged in: {user.id}")
        return user, authority.issue(user)

    @staticmethod
    async def get_profile(db: AsyncSession, actor: ActorIdentity) -> User:
        user = await UserRepository.get_by_id(db, actor.id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    @staticmethod
    async def update_profile(db: AsyncSession, actor: ActorIdentity, name: Optional[str]) -> User:
        user = await AuthService.get_profile(db, actor)
        if name is not None and name != user.name:
            user.name = name
            user = await UserRepository.save(db, user)
        return user

    @staticmethod
    async def change_password(
        db: AsyncSession, actor: ActorIdentity, current_password: str, new_password: str
    ) -> None:
        user = await AuthService.get_profile(db, actor)
        if not verify_password(current_password, user.password_hash):
            raise ValidationException("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        await UserRepository.save(db, user)
        logger.info(f"Password changed for user {user.id}")

    @staticmethod
    def logout(authority: SessionAuthority, access_token: str, refresh_token: Optional[str] = None) -> None:
        authority.revoke(access_token)
        if refresh_token:
            authority.revoke(refresh_token)

    @staticmethod
    async def set_active(db: AsyncSession, user_id: uuid.UUID, is_active: bool) -> User:
        user = await UserRepository.get_by_id(db, user_id)
        if user is None:
            raise NotFoundException("User not found")
        user.is_active = is_active
        return await UserRepository.save(db, user)
