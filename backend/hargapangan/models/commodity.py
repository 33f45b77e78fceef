"""Commodity models (national registry + user-defined custom commodities)"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func

from hargapangan.core.database import Base

CATEGORIES = ("beras", "sayuran", "daging", "bumbu", "lainnya")


class Commodity(Base):
    __tablename__ = "commodities"

    id = Column(Integer, primary_key=True, index=True)
    # Commodity id in the Badan Pangan panel API
    external_id = Column(Integer, unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    unit = Column(String(50), nullable=False, default="Rp/kg")
    category = Column(String(20), nullable=False, default="lainnya", index=True)
    image_url = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CustomCommodity(Base):
    __tablename__ = "custom_commodities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    unit = Column(String(50), nullable=False)
    category = Column(String(100), nullable=False)  # free text, not the national enum
    description = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id"))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
