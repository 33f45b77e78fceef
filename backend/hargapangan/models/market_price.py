"""Market price report models (user-submitted observations)"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Numeric,
    Boolean,
    Date,
    Time,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from hargapangan.core.database import Base

COMMODITY_SOURCES = ("national", "custom")
MARKET_TYPES = ("traditional", "modern", "wholesale", "online")
QUALITY_GRADES = ("premium", "standard", "economy")
VERIFICATION_STATUSES = ("pending", "verified", "rejected")


class MarketPriceReport(Base):
    __tablename__ = "market_price_reports"

    id = Column(Integer, primary_key=True, index=True)

    # Tagged reference: commodities.id when national, custom_commodities.id when custom
    commodity_source = Column(String(10), nullable=False, default="national")
    commodity_id = Column(Integer, nullable=False)

    market_name = Column(String(150), nullable=False, index=True)
    market_type = Column(String(20), nullable=False, default="traditional")
    market_location = Column(String(255))
    province_name = Column(String(100), index=True)
    city_name = Column(String(100))

    price = Column(Numeric(15, 2), nullable=False)
    unit = Column(String(50))
    quality_grade = Column(String(10), nullable=False, default="standard")
    date_recorded = Column(Date, nullable=False, index=True)
    time_recorded = Column(Time)

    # Evidence
    image_path = Column(String(255))
    image_phash = Column(String(64), index=True)
    notes = Column(Text)

    source = Column(String(10), nullable=False, default="manual")  # manual, import, api
    import_batch_id = Column(String(36), index=True)

    verification_status = Column(String(10), nullable=False, default="pending", index=True)
    verified_by = Column(Integer, ForeignKey("users.id"))
    verified_at = Column(DateTime(timezone=True))
    reported_by = Column(Integer, ForeignKey("users.id"))

    latitude = Column(Numeric(10, 7))
    longitude = Column(Numeric(10, 7))
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    images = relationship(
        "MarketPriceImage",
        order_by="MarketPriceImage.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_market_price_commodity", "commodity_id", "commodity_source"),
    )


class MarketPriceImage(Base):
    """Additional evidence images, ordered by position."""
    __tablename__ = "market_price_images"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("market_price_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    storage_key = Column(String(255), nullable=False)
    sha256 = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
