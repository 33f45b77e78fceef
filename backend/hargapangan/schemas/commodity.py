"""Commodity schemas"""
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from hargapangan.schemas.common import Pagination

Category = Literal['beras', 'sayuran', 'daging', 'bumbu', 'lainnya']


class CommodityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: Optional[int] = None
    name: str
    unit: str
    category: str
    image_url: Optional[str] = None
    is_active: bool


class CommodityCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    unit: str = Field("Rp/kg", max_length=50)
    category: Optional[Category] = Field(None, description="Derived from the name when omitted")
    external_id: Optional[int] = None
    image_url: Optional[str] = None


class CommodityUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    unit: Optional[str] = Field(None, max_length=50)
    category: Optional[Category] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class CommodityListResponse(BaseModel):
    commodities: List[CommodityResponse]
    pagination: Pagination


class CustomCommodityCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    unit: str = Field(..., min_length=1, max_length=50)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class CustomCommodityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    unit: str
    category: str
    description: Optional[str] = None
    created_by: Optional[int] = None
    is_active: bool
