"""Shared dependencies for process-wide services kept on app.state"""
from fastapi import Request

from hargapangan.core.config import settings
from hargapangan.core.database import AsyncSessionLocal
from hargapangan.services.price_api_client import PriceApiClient
from hargapangan.services.scheduler import SyncScheduler
from hargapangan.services.snapshot_cache import SnapshotCache
from hargapangan.services.sync_service import PriceSyncService


def get_price_client(request: Request) -> PriceApiClient:
    client = getattr(request.app.state, "price_client", None)
    if client is None:
        client = PriceApiClient()
        request.app.state.price_client = client
    return client


def get_snapshot_cache(request: Request) -> SnapshotCache:
    cache = getattr(request.app.state, "snapshot_cache", None)
    if cache is None:
        cache = SnapshotCache(ttl_seconds=settings.UPSTREAM_CACHE_TTL_SECONDS)
        request.app.state.snapshot_cache = cache
    return cache


def get_sync_scheduler(request: Request) -> SyncScheduler:
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        scheduler = SyncScheduler(PriceSyncService(AsyncSessionLocal, client=get_price_client(request)))
        request.app.state.sync_scheduler = scheduler
    return scheduler
