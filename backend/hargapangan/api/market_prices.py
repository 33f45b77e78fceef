"""Market price report endpoints"""
from datetime import date, time
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.database import get_db
from hargapangan.core.security import get_current_user, request_meta, require_roles
from hargapangan.models.market_price import MarketPriceReport
from hargapangan.models.user import User
from hargapangan.schemas.common import Pagination
from hargapangan.schemas.market_price import (
    ImportSummaryResponse,
    MarketCompareResponse,
    MarketPriceImageResponse,
    MarketPriceListResponse,
    MarketPriceResponse,
    MarketPriceUpdate,
    VerificationRequest,
)
from hargapangan.services.commodity_registry import make_ref
from hargapangan.services.csv_import import import_market_prices
from hargapangan.services.market_price_service import (
    MarketPriceFilters,
    MarketPriceInput,
    MarketPriceService,
    NewCustomCommodity,
)

router = APIRouter()

CommoditySource = Literal['national', 'custom']


async def _response(service: MarketPriceService, report: MarketPriceReport) -> dict:
    data = MarketPriceResponse.model_validate(report).model_dump()
    data["commodity_name"] = await service.commodity_name(report)
    return data


@router.get("", response_model=MarketPriceListResponse)
async def list_market_prices(
    commodity_id: Optional[int] = None,
    commodity_source: CommoditySource = "national",
    market_type: Optional[str] = None,
    quality_grade: Optional[str] = None,
    verification_status: Optional[str] = None,
    source: Optional[str] = None,
    market_name: Optional[str] = None,
    province_name: Optional[str] = None,
    city_name: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    service = MarketPriceService(db)
    filters = MarketPriceFilters(
        commodity=make_ref(commodity_source, commodity_id) if commodity_id is not None else None,
        market_type=market_type,
        quality_grade=quality_grade,
        verification_status=verification_status,
        source=source,
        market_name=market_name,
        province_name=province_name,
        city_name=city_name,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    reports, total = await service.list(filters, page=page, limit=limit)
    return {
        "market_prices": [await _response(service, r) for r in reports],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/compare", response_model=MarketCompareResponse)
async def compare_markets(
    commodity_id: int,
    commodity_source: CommoditySource = "national",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    province_name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Price spread across markets for one commodity."""
    return await MarketPriceService(db).compare(
        make_ref(commodity_source, commodity_id),
        date_from=date_from,
        date_to=date_to,
        province_name=province_name,
    )


@router.post("/import", response_model=ImportSummaryResponse)
async def import_csv(
    request: Request,
    file: UploadFile = File(..., description="CSV with market_name, price, date_recorded and commodity columns"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="CSV file required")
    summary = await import_market_prices(db, await file.read(), user, meta=request_meta(request))
    return summary.__dict__


@router.post("", response_model=MarketPriceResponse, status_code=201)
async def create_market_price(
    request: Request,
    market_name: str = Form(..., min_length=1, max_length=150),
    price: Decimal = Form(..., gt=0),
    date_recorded: date = Form(...),
    commodity_type: Literal['existing', 'new'] = Form("existing"),
    commodity_source: CommoditySource = Form("national"),
    commodity_id: Optional[int] = Form(None),
    commodity_name: Optional[str] = Form(None),
    commodity_unit: Optional[str] = Form(None),
    commodity_category: Optional[str] = Form(None),
    market_type: str = Form("traditional"),
    market_location: Optional[str] = Form(None),
    province_name: Optional[str] = Form(None),
    city_name: Optional[str] = Form(None),
    quality_grade: str = Form("standard"),
    time_recorded: Optional[time] = Form(None),
    notes: Optional[str] = Form(None),
    latitude: Optional[Decimal] = Form(None),
    longitude: Optional[Decimal] = Form(None),
    image: Optional[UploadFile] = File(None, description="Photo of the price at the market"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if commodity_type == "new":
        commodity = NewCustomCommodity(
            name=commodity_name or "",
            unit=commodity_unit or "",
            category=commodity_category or "",
        )
    else:
        if commodity_id is None:
            raise HTTPException(status_code=422, detail="commodity_id is required for existing commodity")
        commodity = make_ref(commodity_source, commodity_id)

    image_bytes = await image.read() if image is not None and image.filename else None

    service = MarketPriceService(db, meta=request_meta(request))
    report = await service.create(
        MarketPriceInput(
            market_name=market_name,
            price=price,
            date_recorded=date_recorded,
            commodity=commodity,
            market_type=market_type,
            market_location=market_location,
            province_name=province_name,
            city_name=city_name,
            quality_grade=quality_grade,
            time_recorded=time_recorded,
            notes=notes,
            latitude=latitude,
            longitude=longitude,
        ),
        reporter=user,
        image=image_bytes,
    )
    return await _response(service, report)


@router.get("/{report_id}", response_model=MarketPriceResponse)
async def get_market_price(report_id: int, db: AsyncSession = Depends(get_db)):
    service = MarketPriceService(db)
    return await _response(service, await service.get(report_id))


@router.put("/{report_id}", response_model=MarketPriceResponse)
async def update_market_price(
    request: Request,
    report_id: int,
    body: MarketPriceUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = MarketPriceService(db, meta=request_meta(request))
    report = await service.update(report_id, body.model_dump(exclude_unset=True), user)
    return await _response(service, report)


@router.delete("/{report_id}", status_code=204)
async def delete_market_price(
    request: Request,
    report_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await MarketPriceService(db, meta=request_meta(request)).delete(report_id, user)


@router.post("/{report_id}/images", response_model=MarketPriceImageResponse, status_code=201)
async def add_market_price_image(
    report_id: int,
    image: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await MarketPriceService(db).add_image(report_id, await image.read(), user)


@router.delete("/{report_id}/images/{image_id}", status_code=204)
async def remove_market_price_image(
    report_id: int,
    image_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await MarketPriceService(db).remove_image(report_id, image_id, user)


@router.patch("/{report_id}/verification", response_model=MarketPriceResponse)
async def verify_market_price(
    request: Request,
    report_id: int,
    body: VerificationRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    service = MarketPriceService(db, meta=request_meta(request))
    report = await service.verify(report_id, body.verification_status, user, notes=body.notes)
    return await _response(service, report)
