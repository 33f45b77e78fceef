"""Region endpoints"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.api.deps import get_price_client
from hargapangan.core.database import get_db
from hargapangan.models.region import Region
from hargapangan.schemas.region import RegionResponse
from hargapangan.services.price_api_client import PriceApiClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _name(raw: dict, fallback: str) -> str:
    return raw.get("nama") or raw.get("name") or fallback


@router.get("/provinces", response_model=List[RegionResponse])
async def list_provinces(
    db: AsyncSession = Depends(get_db),
    client: PriceApiClient = Depends(get_price_client),
):
    """Provinces known locally; fetched from upstream on first use."""
    query = select(Region).where(Region.level == "province").order_by(Region.province_name)
    provinces = (await db.execute(query)).scalars().all()
    if provinces:
        return provinces

    for raw in await client.fetch_provinces():
        if raw.get("id") is None:
            continue
        db.add(Region(
            province_id=raw["id"],
            province_name=_name(raw, f"Provinsi {raw['id']}"),
            level="province",
        ))
    await db.commit()
    return (await db.execute(query)).scalars().all()


@router.get("/cities/{province_id}", response_model=List[RegionResponse])
async def list_cities(
    province_id: int,
    db: AsyncSession = Depends(get_db),
    client: PriceApiClient = Depends(get_price_client),
):
    query = (
        select(Region)
        .where(Region.level == "city", Region.province_id == province_id)
        .order_by(Region.city_name)
    )
    cities = (await db.execute(query)).scalars().all()
    if cities:
        return cities

    province = (await db.execute(
        select(Region).where(Region.level == "province", Region.province_id == province_id)
    )).scalar_one_or_none()
    province_name = province.province_name if province else f"Provinsi {province_id}"

    fetched = await client.fetch_cities(province_id)
    for raw in fetched:
        if raw.get("id") is None:
            continue
        db.add(Region(
            province_id=province_id,
            province_name=province_name,
            city_id=raw["id"],
            city_name=_name(raw, f"Kota {raw['id']}"),
            level="city",
        ))
    await db.commit()
    logger.info("Stored %d cities for province %s", len(fetched), province_id)
    return (await db.execute(query)).scalars().all()
