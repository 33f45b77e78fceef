"""Upstream passthrough schemas"""
from typing import List, Optional
from pydantic import BaseModel


class UpstreamPrice(BaseModel):
    external_id: int
    name: Optional[str] = None
    unit: Optional[str] = None
    icon: Optional[str] = None
    price_today: Optional[float] = None
    price_yesterday: Optional[float] = None


class UpstreamPricesResponse(BaseModel):
    cached: bool
    stale: bool = False
    age_seconds: Optional[float] = None
    count: int
    data: List[UpstreamPrice]


class CacheEntryStatus(BaseModel):
    key: str
    age_seconds: float
    is_expired: bool
    records: Optional[int] = None


class CacheStatusResponse(BaseModel):
    ttl_seconds: float
    entries: List[CacheEntryStatus]


class CacheClearResponse(BaseModel):
    cleared: int
