"""Upstream passthrough - live prices from the national panel, cached"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from hargapangan.api.deps import get_price_client, get_snapshot_cache
from hargapangan.core.errors import UpstreamUnavailable
from hargapangan.core.security import require_roles
from hargapangan.models.user import User
from hargapangan.schemas.upstream import CacheClearResponse, CacheStatusResponse, UpstreamPricesResponse
from hargapangan.services.price_api_client import PriceApiClient
from hargapangan.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize(snapshots) -> list:
    return [
        {
            "external_id": s.external_id,
            "name": s.name,
            "unit": s.unit,
            "icon": s.icon,
            "price_today": float(s.price_today) if s.price_today is not None else None,
            "price_yesterday": float(s.price_yesterday) if s.price_yesterday is not None else None,
        }
        for s in snapshots
    ]


@router.get("/prices", response_model=UpstreamPricesResponse)
async def upstream_prices(
    province_id: Optional[int] = None,
    city_id: Optional[int] = None,
    level_harga_id: int = Query(3, ge=1, le=3),
    refresh: bool = False,
    client: PriceApiClient = Depends(get_price_client),
    cache: SnapshotCache = Depends(get_snapshot_cache),
):
    """
    Current upstream prices without touching the ledger.

    Served from cache while fresh; when the upstream is down an expired
    entry is returned with stale=true rather than failing.
    """
    key = (province_id, city_id, level_harga_id)

    if not refresh:
        cached = cache.get(key)
        if cached is not None:
            return {"cached": True, "age_seconds": cache.age_seconds(key), "count": len(cached), "data": cached}

    try:
        snapshots = await client.fetch_prices(province_id=province_id, city_id=city_id, level_id=level_harga_id)
    except UpstreamUnavailable:
        stale = cache.get_stale(key)
        if stale is None:
            raise
        logger.warning("Upstream down, serving stale cache for %s", key)
        return {
            "cached": True,
            "stale": True,
            "age_seconds": cache.age_seconds(key),
            "count": len(stale),
            "data": stale,
        }

    data = _serialize(snapshots)
    cache.put(key, data)
    return {"cached": False, "age_seconds": 0.0, "count": len(data), "data": data}


@router.get("/cache", response_model=CacheStatusResponse)
async def cache_status(
    cache: SnapshotCache = Depends(get_snapshot_cache),
    user: User = Depends(require_roles("admin")),
):
    return cache.status()


@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(
    cache: SnapshotCache = Depends(get_snapshot_cache),
    user: User = Depends(require_roles("admin")),
):
    cleared = cache.invalidate()
    logger.info("Upstream cache cleared by user %s (%d entries)", user.id, cleared)
    return {"cleared": cleared}
