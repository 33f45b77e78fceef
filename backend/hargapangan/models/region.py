"""Region model"""
from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.sql import func

from hargapangan.core.database import Base


class Region(Base):
    __tablename__ = "regions"

    id = Column(Integer, primary_key=True, index=True)
    province_id = Column(Integer, index=True)
    province_name = Column(String(100), nullable=False)
    city_id = Column(Integer, index=True)
    city_name = Column(String(100))
    level = Column(String(10), nullable=False, default="national")  # national, province, city
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_regions_province_level", "province_id", "level"),
    )
