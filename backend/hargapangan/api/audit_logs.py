"""Audit log listing (admin only)"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.database import get_db
from hargapangan.core.security import require_roles
from hargapangan.models.audit import AuditLogEntry
from hargapangan.models.user import User
from hargapangan.schemas.audit import AuditLogListResponse
from hargapangan.schemas.common import Pagination

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    query = select(AuditLogEntry)
    if action:
        query = query.where(AuditLogEntry.action == action)
    if entity_type:
        query = query.where(AuditLogEntry.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLogEntry.entity_id == entity_id)
    if user_id is not None:
        query = query.where(AuditLogEntry.user_id == user_id)
    if start_date:
        query = query.where(AuditLogEntry.created_at >= start_date)
    if end_date:
        query = query.where(AuditLogEntry.created_at <= end_date)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {"logs": result.scalars().all(), "pagination": Pagination.build(page, limit, total)}
