"""Authentication and profile routes."""

from typing import Optional

from fastapi import APIRouter

from app.api.deps import Authority, BearerToken, CurrentActor, DB
from app.models.billing_enums import UserRole
from app.models.models import User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    SignupRequest,
    UserResponse,
    UserUpdateRequest,
)
from app.services.auth_service import AuthService
from app.services.session_service import TokenPair
from app.utils.envelopes import api_success

router = APIRouter(tags=["auth"])


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        role=UserRole(user.role).value,
        is_active=user.is_active,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _auth_response(user: User, tokens: TokenPair) -> dict:
    return AuthResponse(
        user=_user_response(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_at=tokens.expires_at,
    ).model_dump(mode="json")


@router.post("/auth/register", response_model=dict, status_code=201)
async def register(payload: SignupRequest, db: DB, authority: Authority):
    """Create an account and return a fresh token pair."""
    user, tokens = await AuthService.register(db, authority, payload.email, payload.password, payload.name)
    return api_success(_auth_response(user, tokens))


@router.post("/auth/login", response_model=dict)
async def login(payload: LoginRequest, db: DB, authority: Authority):
    user, tokens = await AuthService.login(db, authority, payload.email, payload.password)
    return api_success(_auth_response(user, tokens))


@router.get("/auth/profile", response_model=dict)
async def get_profile(actor: CurrentActor, db: DB):
    user = await AuthService.get_profile(db, actor)
    return api_success(_user_response(user).model_dump(mode="json"))


@router.put("/auth/profile", response_model=dict)
async def update_profile(payload: UserUpdateRequest, actor: CurrentActor, db: DB):
    user = await AuthService.update_profile(db, actor, payload.name)
    return api_success(_user_response(user).model_dump(mode="json"))


@router.post("/auth/change-password", response_model=dict)
async def change_password(payload: ChangePasswordRequest, actor: CurrentActor, db: DB):
    await AuthService.change_password(db, actor, payload.current_password, payload.new_password)
    return api_success({"message": "Password changed successfully"})


@router.post("/auth/logout", response_model=dict)
async def logout(actor: CurrentActor, token: BearerToken, authority: Authority, payload: Optional[LogoutRequest] = None):
    """Revoke the presented access token and, if supplied, the refresh token."""
    AuthService.logout(authority, token, payload.refresh_token if payload else None)
    return api_success({"message": "Logged out successfully"})
