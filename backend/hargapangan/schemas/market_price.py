"""Market price report schemas"""
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from hargapangan.schemas.common import Pagination

MarketType = Literal['traditional', 'modern', 'wholesale', 'online']
QualityGrade = Literal['premium', 'standard', 'economy']


class MarketPriceImageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    storage_key: str


class MarketPriceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    commodity_source: Literal['national', 'custom']
    commodity_id: int
    commodity_name: Optional[str] = None
    market_name: str
    market_type: str
    market_location: Optional[str] = None
    province_name: Optional[str] = None
    city_name: Optional[str] = None
    price: Decimal
    unit: Optional[str] = None
    quality_grade: str
    date_recorded: date
    time_recorded: Optional[time] = None
    image_path: Optional[str] = None
    notes: Optional[str] = None
    source: str
    import_batch_id: Optional[str] = None
    verification_status: str
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    reported_by: Optional[int] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    images: List[MarketPriceImageResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class MarketPriceListResponse(BaseModel):
    market_prices: List[MarketPriceResponse]
    pagination: Pagination


class MarketPriceUpdate(BaseModel):
    market_name: Optional[str] = Field(None, min_length=1, max_length=150)
    market_type: Optional[MarketType] = None
    market_location: Optional[str] = None
    province_name: Optional[str] = None
    city_name: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    quality_grade: Optional[QualityGrade] = None
    date_recorded: Optional[date] = None
    time_recorded: Optional[time] = None
    notes: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None


class VerificationRequest(BaseModel):
    verification_status: Literal['verified', 'rejected']
    notes: Optional[str] = None


class ImportSummaryResponse(BaseModel):
    batch_id: str
    total: int
    imported: int
    failed: int
    errors: List[str]


class MarketSpread(BaseModel):
    market_name: str
    market_type: str
    avg_price: float
    min_price: float
    max_price: float
    reports: int
    latest_date: Optional[date] = None


class ReferencePrice(BaseModel):
    date: date
    price: float
    source: str


class CompareCommodity(BaseModel):
    id: int
    name: str
    unit: str
    source: Literal['national', 'custom']


class MarketCompareResponse(BaseModel):
    commodity: CompareCommodity
    markets: List[MarketSpread]
    reference_price: Optional[ReferencePrice] = None
