"""Region schemas"""
from typing import Optional
from pydantic import BaseModel, ConfigDict


class RegionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    province_id: Optional[int] = None
    province_name: str
    city_id: Optional[int] = None
    city_name: Optional[str] = None
    level: str
