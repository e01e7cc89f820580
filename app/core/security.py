"""Security utilities for password hashing and JWT encoding."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from app.core.config import settings

# Argon2 password hasher
ph = PasswordHasher()

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def hash_password(password: str) -> str:
    """Hash a password using Argon2."""
    return ph.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a hash."""
    try:
        ph.verify(hashed, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def _encode(data: dict[str, Any], secret: str, expires_delta: timedelta) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    to_encode = data.copy()
    to_encode.update({"exp": expire, "iat": now, "jti": generate_token(16)})
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM), expire


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> tuple[str, datetime]:
    """Create a signed access token. Returns the token and its expiry."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRES_MINUTES)
    return _encode({**data, "type": ACCESS_TOKEN_TYPE}, settings.JWT_SECRET, expires_delta)


def create_refresh_token(subject: str, expires_delta: Optional[timedelta] = None) -> tuple[str, datetime]:
    """Create a signed refresh token carrying only the subject."""
    if expires_delta is None:
        expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRES_DAYS)
    return _encode({"sub": subject, "type": REFRESH_TOKEN_TYPE}, settings.JWT_REFRESH_SECRET, expires_delta)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify an access token.

    Raises jwt.ExpiredSignatureError or jwt.PyJWTError; callers map those to
    session errors.
    """
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["exp", "sub"]},
    )


def decode_refresh_token(token: str) -> dict[str, Any]:
    """Decode and verify a refresh token."""
    return jwt.decode(
        token,
        settings.JWT_REFRESH_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["exp", "sub"]},
    )


def read_expiry(token: str) -> Optional[datetime]:
    """Read the exp claim without verifying signature or expiry."""
    try:
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def generate_token(length: int = 32) -> str:
    """Generate a secure random token."""
    return secrets.token_urlsafe(length)
