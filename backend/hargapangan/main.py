"""Harga Pangan API - FastAPI Backend"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from hargapangan.api import (
    audit_logs,
    auth,
    commodities,
    health,
    market_prices,
    overrides,
    prices,
    regions,
    upstream,
)
from hargapangan.core.config import settings
from hargapangan.core.database import AsyncSessionLocal, engine
from hargapangan.core.errors import PriceServiceError
from hargapangan.core.logging import configure_logging
from hargapangan.core.rate_limit import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)

    # Startup - initialize database
    from hargapangan.core.database import init_db
    await init_db()

    from hargapangan.services.seed_service import seed_data
    await seed_data()

    from hargapangan.services.price_api_client import PriceApiClient
    from hargapangan.services.scheduler import SyncScheduler
    from hargapangan.services.sync_service import PriceSyncService

    app.state.price_client = PriceApiClient()
    app.state.sync_scheduler = SyncScheduler(PriceSyncService(AsyncSessionLocal, client=app.state.price_client))
    if settings.SYNC_ENABLED:
        app.state.sync_scheduler.start()
    else:
        logger.info("Scheduled sync disabled")

    yield
    # Shutdown
    app.state.sync_scheduler.stop()
    await app.state.price_client.close()
    await engine.dispose()


app = FastAPI(
    title="Harga Pangan API",
    description="Indonesian food commodity prices: synced national data, manual overrides and market reports",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PriceServiceError)
async def price_service_error_handler(request: Request, exc: PriceServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


# Routes
app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(prices.router, prefix="/api/v1/prices", tags=["Prices"])
app.include_router(commodities.router, prefix="/api/v1/commodities", tags=["Commodities"])
app.include_router(overrides.router, prefix="/api/v1/overrides", tags=["Overrides"])
app.include_router(market_prices.router, prefix="/api/v1/market-prices", tags=["Market Prices"])
app.include_router(upstream.router, prefix="/api/v1/upstream", tags=["Upstream"])
app.include_router(regions.router, prefix="/api/v1/regions", tags=["Regions"])
app.include_router(audit_logs.router, prefix="/api/v1/audit-logs", tags=["Audit"])
