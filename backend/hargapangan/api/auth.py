"""Authentication endpoints"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.config import settings
from hargapangan.core.database import get_db
from hargapangan.core.errors import AuthenticationFailed
from hargapangan.core.rate_limit import limiter
from hargapangan.core.security import get_current_user, issue_token, request_meta, verify_password
from hargapangan.models.user import User
from hargapangan.schemas.auth import LoginRequest, LoginResponse, UserResponse
from hargapangan.services.audit import record_audit

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
@limiter.limit(f"{settings.RATE_LIMIT_AUTH_PER_MINUTE}/minute")
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.username == credentials.username))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or not verify_password(credentials.password, user.password_hash):
        await record_audit(
            db,
            action="login_failed",
            entity_type="user",
            entity_id=user.id if user else None,
            new_values={"username": credentials.username},
            meta=request_meta(request),
        )
        raise AuthenticationFailed("Invalid username or password")

    token = issue_token(user)
    user.last_login = datetime.now(timezone.utc)
    await record_audit(
        db,
        action="user_login",
        entity_type="user",
        entity_id=user.id,
        user_id=user.id,
        meta=request_meta(request),
        commit=False,
    )
    await db.commit()

    return LoginResponse(
        access_token=token,
        expires_at=user.token_expires_at,
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user
