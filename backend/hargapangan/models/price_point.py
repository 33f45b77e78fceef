"""Price ledger model"""
from sqlalchemy import Column, Integer, BigInteger, String, Numeric, Boolean, Date, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from hargapangan.core.database import Base

PRICE_SOURCES = ("api", "manual")
PRICE_LEVELS = ("produsen", "grosir", "eceran", "konsumen")

# level_harga_id used by the upstream API
LEVEL_BY_ID = {1: "produsen", 2: "grosir", 3: "konsumen"}


def level_for_id(level_id: int) -> str:
    return LEVEL_BY_ID.get(level_id, "konsumen")


class PricePoint(Base):
    __tablename__ = "price_points"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)
    commodity_id = Column(Integer, ForeignKey("commodities.id"), nullable=False, index=True)
    region_id = Column(Integer, ForeignKey("regions.id"), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    date = Column(Date, nullable=False, index=True)
    source = Column(String(10), nullable=False, default="api")
    is_override = Column(Boolean, nullable=False, default=False)
    level = Column(String(10), nullable=False, default="konsumen")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # NULL region means national; coalesce so national rows collide too
        Index(
            "uq_price_points_key",
            commodity_id,
            date,
            func.coalesce(region_id, 0),
            source,
            level,
            unique=True,
        ),
        Index("ix_price_points_commodity_date_region", "commodity_id", "date", "region_id"),
    )
