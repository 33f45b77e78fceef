"""Price override endpoints - request, approve/reject and remove manual corrections"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.database import get_db
from hargapangan.core.security import request_meta, require_roles
from hargapangan.models.user import User
from hargapangan.schemas.common import Pagination
from hargapangan.schemas.override import (
    OverrideDecision,
    OverrideListResponse,
    OverrideResponse,
)
from hargapangan.services.override_manager import OverrideManager

router = APIRouter()


@router.get("", response_model=OverrideListResponse)
async def list_overrides(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
    commodity_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    rows, total = await OverrideManager(db).list(
        status=status,
        commodity_id=commodity_id,
        start=start_date,
        end=end_date,
        page=page,
        limit=limit,
    )
    overrides = []
    for override, price_point, commodity in rows:
        item = OverrideResponse.model_validate(override).model_dump()
        item.update(
            commodity_id=commodity.id,
            commodity_name=commodity.name,
            date=price_point.date,
            level=price_point.level,
        )
        overrides.append(item)
    return {"overrides": overrides, "pagination": Pagination.build(page, limit, total)}


@router.post("", response_model=OverrideResponse, status_code=201)
async def create_override(
    request: Request,
    commodity_id: int = Form(...),
    on_date: date = Form(..., alias="date"),
    override_price: Decimal = Form(..., gt=0),
    reason: str = Form(..., min_length=3),
    region_id: Optional[int] = Form(None),
    source_info: Optional[str] = Form(None, max_length=255),
    evidence: Optional[UploadFile] = File(None, description="Photo or document backing the correction"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    """
    Request a manual price correction.

    Small corrections (and any correction by an admin) apply immediately;
    larger ones wait for approval.
    """
    evidence_bytes = await evidence.read() if evidence is not None and evidence.filename else None

    return await OverrideManager(db, meta=request_meta(request)).create(
        commodity_id=commodity_id,
        on_date=on_date,
        requested_price=override_price,
        reason=reason,
        requester=user,
        region_id=region_id,
        source_info=source_info,
        evidence=evidence_bytes,
    )


@router.patch("/{override_id}/status", response_model=OverrideResponse)
async def decide_override(
    request: Request,
    override_id: int,
    body: OverrideDecision,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    return await OverrideManager(db, meta=request_meta(request)).decide(
        override_id, body.status, user, rejection_reason=body.rejection_reason
    )


@router.delete("/{override_id}", status_code=204)
async def delete_override(
    request: Request,
    override_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    """Remove an override; an applied one restores the price it replaced."""
    await OverrideManager(db, meta=request_meta(request)).delete(override_id, user)
