"""Sync pipeline - fetch upstream prices, register commodities, reconcile, expire overrides"""
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hargapangan.core.config import settings
from hargapangan.core.errors import UpstreamUnavailable
from hargapangan.models.price_point import level_for_id
from hargapangan.models.region import Region
from hargapangan.services.audit import record_audit
from hargapangan.services.price_api_client import PriceApiClient
from hargapangan.services.price_ledger import PriceLedger

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    province_id: Optional[int] = None
    city_id: Optional[int] = None
    level_id: int = 3
    sync_regions: bool = False
    on_date: Optional[date] = None


@dataclass
class SyncReport:
    success: bool
    message: str
    level: str
    date: date
    started_at: datetime
    duration_seconds: float = 0.0
    regions: int = 0
    commodities: int = 0
    saved: int = 0
    updated: int = 0
    skipped: int = 0
    expired_overrides: int = 0
    errors: List[str] = field(default_factory=list)
    notable_changes: List[dict] = field(default_factory=list)


class PriceSyncService:
    """
    One sync cycle against the upstream price API.

    An unreachable upstream fails the cycle (reported and audited) but
    leaves stored prices untouched; the next scheduled tick retries.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        client: Optional[PriceApiClient] = None,
        today: Callable[[], date] = date.today,
    ):
        self.session_factory = session_factory
        self.client = client or PriceApiClient()
        self._today = today

    async def _sync_regions(self, db: AsyncSession) -> int:
        provinces = await self.client.fetch_provinces()
        created = 0
        for province in provinces:
            province_id = province.get("id")
            if province_id is None:
                continue
            result = await db.execute(
                select(Region).where(Region.province_id == province_id, Region.level == "province")
            )
            if result.scalar_one_or_none() is None:
                db.add(Region(
                    province_id=province_id,
                    province_name=province.get("nama") or province.get("name") or f"Provinsi {province_id}",
                    level="province",
                ))
                created += 1
        await db.commit()
        logger.info("Synced %d new provinces (%d total)", created, len(provinces))
        return len(provinces)

    async def _region_for(self, db: AsyncSession, options: SyncOptions) -> Optional[int]:
        """Local region matching the upstream filter; national when unfiltered or unknown."""
        if options.city_id is not None:
            query = select(Region.id).where(Region.city_id == options.city_id, Region.level == "city")
        elif options.province_id is not None:
            query = select(Region.id).where(Region.province_id == options.province_id, Region.level == "province")
        else:
            return None
        return (await db.execute(query.limit(1))).scalar_one_or_none()

    async def run(self, options: Optional[SyncOptions] = None) -> SyncReport:
        options = options or SyncOptions(level_id=settings.SYNC_DEFAULT_LEVEL_ID)
        started = time.monotonic()
        on_date = options.on_date or self._today()
        level = level_for_id(options.level_id)
        report = SyncReport(
            success=False,
            message="",
            level=level,
            date=on_date,
            started_at=datetime.now(timezone.utc),
        )

        logger.info("Starting price synchronization (level=%s, province=%s, city=%s)",
                    level, options.province_id, options.city_id)

        async with self.session_factory() as db:
            if options.sync_regions:
                try:
                    report.regions = await self._sync_regions(db)
                except UpstreamUnavailable as e:
                    logger.warning("Region sync failed (non-critical): %s", e)
                    report.errors.append(f"Region sync: {e.message}")

            try:
                snapshots = await self.client.fetch_prices(
                    province_id=options.province_id,
                    city_id=options.city_id,
                    level_id=options.level_id,
                )
            except UpstreamUnavailable as e:
                report.duration_seconds = round(time.monotonic() - started, 1)
                report.message = f"Sync failed: {e.message}"
                report.errors.append(e.message)
                logger.error("Price sync failed: %s", e.message)
                await record_audit(
                    db,
                    action="sync_error",
                    entity_type="system",
                    entity_id=0,
                    new_values={"error": e.message, "level": level},
                )
                return report

            try:
                region_id = await self._region_for(db, options)
            except SQLAlchemyError as e:
                await db.rollback()
                report.duration_seconds = round(time.monotonic() - started, 1)
                report.message = f"Sync failed: region lookup error ({e.__class__.__name__})"
                report.errors.append(str(e))
                logger.error("Region lookup failed, sync aborted: %s", e)
                return report

            ledger = PriceLedger(db)
            result = await ledger.reconcile(on_date, level, snapshots, region_id=region_id)
            try:
                report.expired_overrides = await ledger.purge_expired_overrides()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("Expired override cleanup failed (non-critical): %s", e)
                report.errors.append(f"Override cleanup: {e.__class__.__name__}")

        report.commodities = len({s.external_id for s in snapshots})
        report.saved = result.saved_count
        report.updated = result.updated
        report.skipped = result.skipped_count
        report.errors.extend(result.errors[: settings.IMPORT_ERROR_SAMPLE_SIZE])
        report.notable_changes = result.notable_changes
        report.duration_seconds = round(time.monotonic() - started, 1)
        report.success = True
        report.message = (
            f"Sync completed: {report.commodities} commodities, {report.saved} prices, "
            f"{report.skipped} skipped"
        )

        logger.info("Synchronization completed in %.1fs: %s", report.duration_seconds, report.message)
        return report
