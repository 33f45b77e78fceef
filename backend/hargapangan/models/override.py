"""Price override model (manual corrections with approval workflow)"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, BigInteger, String, Text, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func

from hargapangan.core.database import Base

OVERRIDE_STATUSES = ("pending", "approved", "rejected")


class PriceOverride(Base):
    __tablename__ = "price_overrides"

    id = Column(Integer, primary_key=True, index=True)
    price_point_id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("price_points.id"),
        nullable=False,
        index=True,
    )

    # Snapshot of the price point before the override was applied
    original_price = Column(Numeric(12, 2), nullable=False)
    original_source = Column(String(10), nullable=False, default="api")
    original_is_override = Column(Boolean, nullable=False, default=False)

    override_price = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=False)
    source_info = Column(String(255))
    evidence_path = Column(String(255))

    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id"))
    status = Column(String(10), nullable=False, default="pending", index=True)
    rejection_reason = Column(Text)

    applied_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @staticmethod
    def compute_expiry(hours: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(hours=hours)
