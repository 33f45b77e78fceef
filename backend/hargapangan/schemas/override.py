"""Override request/response schemas"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from hargapangan.schemas.common import Pagination


class OverrideCreate(BaseModel):
    commodity_id: int
    date: date
    override_price: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=3)
    region_id: Optional[int] = None
    source_info: Optional[str] = Field(None, max_length=255)


class OverrideDecision(BaseModel):
    status: Literal['approved', 'rejected', 'approve', 'reject']
    rejection_reason: Optional[str] = None


class OverrideResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    price_point_id: int
    original_price: Decimal
    original_source: str
    override_price: Decimal
    reason: str
    source_info: Optional[str] = None
    evidence_path: Optional[str] = None
    requested_by: int
    approved_by: Optional[int] = None
    status: str
    rejection_reason: Optional[str] = None
    applied_at: Optional[datetime] = None
    expires_at: datetime
    created_at: Optional[datetime] = None


class OverrideListItem(OverrideResponse):
    commodity_id: int
    commodity_name: str
    date: date
    level: str


class OverrideListResponse(BaseModel):
    overrides: List[OverrideListItem]
    pagination: Pagination
