"""Price endpoints - current prices, history, comparison, statistics and sync"""
import csv
import io
from datetime import date, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.api.deps import get_sync_scheduler
from hargapangan.core.config import settings
from hargapangan.core.database import get_db
from hargapangan.core.rate_limit import limiter
from hargapangan.core.security import require_roles
from hargapangan.models.user import User
from hargapangan.schemas.common import Pagination
from hargapangan.schemas.prices import (
    ComparisonResponse,
    CurrentPricesResponse,
    PriceHistoryResponse,
    StatisticsResponse,
    SyncReportResponse,
    SyncRequest,
    SyncStatusResponse,
    TopMoversResponse,
)
from hargapangan.services.comparator import Comparator
from hargapangan.services.scheduler import SyncScheduler
from hargapangan.services.sync_service import SyncOptions

router = APIRouter()

EXPORT_COLUMNS = ["date", "commodity", "category", "unit", "price", "source", "is_override", "level"]


@router.get("/current", response_model=CurrentPricesResponse)
async def current_prices(
    on_date: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    region_id: Optional[int] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Prices for a day, each with the gap against the previous day."""
    on_date = on_date or date.today()
    items, total = await Comparator(db).current_prices(
        on_date, region_id=region_id, category=category, search=search, page=page, limit=limit
    )
    return {"date": on_date, "prices": items, "pagination": Pagination.build(page, limit, total)}


@router.get("/history/{commodity_id}", response_model=PriceHistoryResponse)
async def price_history(
    commodity_id: int,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    region_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    """Day-over-day series for one commodity (last 30 days by default)."""
    to_date = to_date or date.today()
    from_date = from_date or to_date - timedelta(days=30)
    return await Comparator(db).day_over_day(commodity_id, from_date, to_date, region_id=region_id)


@router.get("/comparison", response_model=ComparisonResponse)
async def comparison(
    on_date: Optional[date] = Query(None, alias="date"),
    region_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    """API price vs manual price per commodity for one day."""
    on_date = on_date or date.today()
    return {"date": on_date, "comparison": await Comparator(db).compare_day(on_date, region_id=region_id)}


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics(
    period: Literal['24h', '7d', '30d', '90d'] = "7d",
    region_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    return await Comparator(db).period_statistics(period, date.today(), region_id=region_id)


@router.get("/top-movers", response_model=TopMoversResponse)
async def top_movers(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    n: int = Query(10, ge=1, le=50),
    region_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=7)
    if start_date > end_date:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date")

    movers = await Comparator(db).top_movers(start_date, end_date, n=n, region_id=region_id)
    return {"start_date": start_date, "end_date": end_date, "movers": [m.__dict__ for m in movers]}


@router.get("/export")
async def export_prices(
    format: Literal['csv', 'json'] = "csv",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_roles("admin", "editor")),
):
    rows = await Comparator(db).export_rows(start_date, end_date)

    if format == "json":
        return {"count": len(rows), "data": rows}

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for row in rows:
        writer.writerow({**row, "date": row["date"].isoformat()})

    filename = f"harga-pangan-{date.today().isoformat()}.csv"
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/sync", response_model=SyncReportResponse)
@limiter.limit(f"{settings.RATE_LIMIT_SYNC_PER_HOUR}/hour")
async def trigger_sync(
    request: Request,
    body: Optional[SyncRequest] = None,
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
    user: User = Depends(require_roles("admin")),
):
    """Run one sync cycle now. 409 while another sync is in progress."""
    body = body or SyncRequest()
    report = await scheduler.trigger(SyncOptions(
        province_id=body.province_id,
        city_id=body.city_id,
        level_id=body.level_harga_id,
        sync_regions=body.sync_regions,
    ))
    if report is None:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    return report.__dict__


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
    user: User = Depends(require_roles("admin", "editor")),
):
    return scheduler.status()
