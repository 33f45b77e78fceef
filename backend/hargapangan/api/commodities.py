"""Commodity endpoints (national list and custom commodities)"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.database import get_db
from hargapangan.core.security import get_current_user, request_meta, require_roles
from hargapangan.models.commodity import Commodity, CustomCommodity
from hargapangan.models.user import User
from hargapangan.schemas.commodity import (
    CommodityCreate,
    CommodityListResponse,
    CommodityResponse,
    CommodityUpdate,
    CustomCommodityCreate,
    CustomCommodityResponse,
)
from hargapangan.schemas.common import Pagination
from hargapangan.services.audit import record_audit
from hargapangan.services.commodity_registry import CommodityRegistry, classify_category

router = APIRouter()


@router.get("", response_model=CommodityListResponse)
async def list_commodities(
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    query = select(Commodity)
    if not include_inactive:
        query = query.where(Commodity.is_active.is_(True))
    if category:
        query = query.where(Commodity.category == category)
    if search:
        query = query.where(Commodity.name.ilike(f"%{search}%"))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.order_by(Commodity.name).offset((page - 1) * limit).limit(limit))
    return {
        "commodities": result.scalars().all(),
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/custom", response_model=List[CustomCommodityResponse])
async def list_custom_commodities(
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    query = select(CustomCommodity).where(CustomCommodity.is_active.is_(True))
    if search:
        query = query.where(CustomCommodity.name.ilike(f"%{search}%"))
    result = await db.execute(query.order_by(CustomCommodity.name))
    return result.scalars().all()


@router.post("/custom", response_model=CustomCommodityResponse, status_code=201)
async def create_custom_commodity(
    body: CustomCommodityCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Find-or-create on (name, unit, category)."""
    commodity = await CommodityRegistry(db).find_or_create_custom(
        name=body.name,
        unit=body.unit,
        category=body.category,
        created_by=user.id,
        description=body.description,
    )
    await db.commit()
    await db.refresh(commodity)
    return commodity


@router.get("/{commodity_id}", response_model=CommodityResponse)
async def get_commodity(commodity_id: int, db: AsyncSession = Depends(get_db)):
    return await CommodityRegistry(db).get(commodity_id)


@router.post("", response_model=CommodityResponse, status_code=201)
async def create_commodity(
    request: Request,
    body: CommodityCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    if body.external_id is not None:
        existing = await db.execute(select(Commodity.id).where(Commodity.external_id == body.external_id))
        if existing.scalar_one_or_none() is not None:
            raise HTTPException(status_code=409, detail="Commodity with this external_id already exists")

    commodity = Commodity(
        external_id=body.external_id,
        name=body.name,
        unit=body.unit,
        category=body.category or classify_category(body.name),
        image_url=body.image_url,
        is_active=True,
    )
    db.add(commodity)
    await db.flush()
    await record_audit(
        db,
        action="commodity_created",
        entity_type="commodity",
        entity_id=commodity.id,
        user_id=user.id,
        new_values=body.model_dump(),
        meta=request_meta(request),
        commit=False,
    )
    await db.commit()
    await db.refresh(commodity)
    return commodity


@router.put("/{commodity_id}", response_model=CommodityResponse)
async def update_commodity(
    request: Request,
    commodity_id: int,
    body: CommodityUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    commodity = await CommodityRegistry(db).get(commodity_id)
    changes = body.model_dump(exclude_unset=True)
    old_values = {k: getattr(commodity, k) for k in changes}
    for field, value in changes.items():
        setattr(commodity, field, value)

    await record_audit(
        db,
        action="commodity_updated",
        entity_type="commodity",
        entity_id=commodity.id,
        user_id=user.id,
        old_values=old_values,
        new_values=changes,
        meta=request_meta(request),
        commit=False,
    )
    await db.commit()
    await db.refresh(commodity)
    return commodity


@router.delete("/{commodity_id}", status_code=204)
async def delete_commodity(
    request: Request,
    commodity_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    """Soft delete: the commodity keeps its price history."""
    commodity = await CommodityRegistry(db).get(commodity_id)
    commodity.is_active = False
    await record_audit(
        db,
        action="commodity_deleted",
        entity_type="commodity",
        entity_id=commodity.id,
        user_id=user.id,
        old_values={"name": commodity.name, "is_active": True},
        meta=request_meta(request),
        commit=False,
    )
    await db.commit()
