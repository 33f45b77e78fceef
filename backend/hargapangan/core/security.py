"""Password hashing, bearer tokens and role guards"""
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from hargapangan.core.config import settings
from hargapangan.core.database import get_db
from hargapangan.core.errors import AuthenticationFailed, PermissionDenied
from hargapangan.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, encoded: str) -> bool:
    if not encoded:
        return False
    return check_password_hash(encoded, password)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue_token(user: User) -> str:
    """Rotate the user's bearer token and return the raw value."""
    token = secrets.token_urlsafe(32)
    user.token_hash = hash_token(token)
    user.token_expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.TOKEN_TTL_HOURS)
    return token


def request_meta(request: Optional[Request]) -> dict:
    """IP and user agent for audit entries."""
    if request is None:
        return {}
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": (request.headers.get("user-agent") or "")[:255] or None,
    }


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("Bearer token required")

    result = await db.execute(
        select(User).where(User.token_hash == hash_token(credentials.credentials))
    )
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise AuthenticationFailed("Invalid token")
    expires_at = as_utc(user.token_expires_at)
    if expires_at is None or expires_at < datetime.now(timezone.utc):
        raise AuthenticationFailed("Token expired")

    return user


def require_roles(*roles: str):
    """Dependency factory restricting an endpoint to the given roles."""

    async def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise PermissionDenied(f"Requires role: {', '.join(roles)}")
        return user

    return _guard
