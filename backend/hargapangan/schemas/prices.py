"""Price schemas - current prices, history, comparison, statistics and sync"""
from datetime import date, datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from hargapangan.schemas.common import Pagination


class CommodityInfo(BaseModel):
    id: int
    name: str
    unit: str
    category: str
    image_url: Optional[str] = None


class CurrentPrice(BaseModel):
    id: int
    commodity: CommodityInfo
    price: float
    yesterday_price: Optional[float] = None
    gap: float
    gap_percentage: Optional[float] = None
    gap_change: Literal['up', 'down', 'stable']
    source: str
    is_override: bool
    date: date
    level: str


class CurrentPricesResponse(BaseModel):
    date: date
    prices: List[CurrentPrice]
    pagination: Pagination


class HistoryPoint(BaseModel):
    date: date
    price: float
    source: str
    is_override: bool
    level: str
    delta: Optional[float] = None
    delta_percentage: Optional[float] = None
    trend: Literal['up', 'down', 'stable']


class HistoryStatistics(BaseModel):
    min: float
    max: float
    avg: float
    current: float
    change_percentage: float


class PriceHistoryResponse(BaseModel):
    commodity: CommodityInfo
    from_date: date
    to_date: date
    history: List[HistoryPoint]
    statistics: HistoryStatistics


class ComparisonItem(BaseModel):
    commodity: CommodityInfo
    api_price: Optional[float] = None
    manual_price: Optional[float] = None
    active_price: Optional[float] = None
    is_override: bool
    delta: Optional[float] = None
    delta_percentage: Optional[float] = None


class ComparisonResponse(BaseModel):
    date: date
    comparison: List[ComparisonItem]


class Mover(BaseModel):
    commodity_id: int
    name: str
    category: str
    start_date: date
    end_date: date
    start_price: float
    end_price: float
    change_percentage: float
    trend: Literal['up', 'down', 'stable']


class TopMoversResponse(BaseModel):
    start_date: date
    end_date: date
    movers: List[Mover]


class CommodityStatistics(BaseModel):
    commodity_id: int
    commodity_name: str
    commodity_category: str
    avg_price: float
    min_price: float
    max_price: float
    data_points: int


class DateRange(BaseModel):
    start: date
    end: date


class StatisticsResponse(BaseModel):
    period: Literal['24h', '7d', '30d', '90d']
    date_range: DateRange
    statistics: List[CommodityStatistics]
    top_movers: List[Mover]


class SyncRequest(BaseModel):
    province_id: Optional[int] = None
    city_id: Optional[int] = None
    level_harga_id: int = Field(3, ge=1, le=3)
    sync_regions: bool = False


class NotableChange(BaseModel):
    commodity_id: int
    commodity_name: str
    old_price: float
    new_price: float
    change_percentage: float


class SyncReportResponse(BaseModel):
    success: bool
    message: str
    level: str
    date: date
    started_at: datetime
    duration_seconds: float
    regions: int
    commodities: int
    saved: int
    updated: int
    skipped: int
    expired_overrides: int
    errors: List[str]
    notable_changes: List[NotableChange]


class SyncStatusResponse(BaseModel):
    scheduler_running: bool
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    last_success: Optional[bool] = None
    last_message: Optional[str] = None
    sync_count: int
    interval_hours: int
    next_run_time: Optional[datetime] = None
