"""Background scheduler for the periodic price sync"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from hargapangan.core.config import settings
from hargapangan.services.sync_service import PriceSyncService, SyncOptions, SyncReport

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Runs PriceSyncService on a fixed interval inside the API process.

    Overlapping runs are skipped, not queued. The running flag lives in this
    process only: it does not survive a restart and does not coordinate
    between several server instances.
    """

    def __init__(self, sync_service: PriceSyncService, interval_hours: Optional[int] = None):
        self.sync_service = sync_service
        self.interval_hours = interval_hours or settings.SYNC_INTERVAL_HOURS
        self._scheduler = None
        self._running = False
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.last_report: Optional[SyncReport] = None
        self.sync_count = 0

    def start(self, initial_delay_seconds: Optional[int] = None):
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        delay = initial_delay_seconds if initial_delay_seconds is not None else settings.SYNC_INITIAL_DELAY_SECONDS

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        # First fire at start_date, i.e. shortly after startup, then every interval
        self._scheduler.add_job(
            self.run_scheduled,
            IntervalTrigger(
                hours=self.interval_hours,
                start_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            ),
            id="price_sync",
            name="Upstream price synchronization",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Price sync scheduler started (interval=%dh)", self.interval_hours)

    def stop(self):
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Price sync scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_scheduled(self) -> Optional[SyncReport]:
        """Scheduled entry point: skipped while another sync is in flight."""
        if self.is_syncing:
            logger.info("Sync already running, skipping scheduled run")
            return None
        return await self._run(SyncOptions(level_id=settings.SYNC_DEFAULT_LEVEL_ID))

    async def trigger(self, options: SyncOptions) -> Optional[SyncReport]:
        """Manual entry point; runs synchronously with the caller's options."""
        if self.is_syncing:
            logger.info("Sync already running, manual trigger skipped")
            return None
        return await self._run(options)

    async def _run(self, options: SyncOptions) -> SyncReport:
        self.is_syncing = True
        self.sync_count += 1
        try:
            logger.info("Sync #%d started", self.sync_count)
            report = await self.sync_service.run(options)
            self.last_report = report
            self.last_sync_time = datetime.now(timezone.utc)
            logger.info("Sync #%d %s", self.sync_count, "completed" if report.success else "failed")
            return report
        finally:
            self.is_syncing = False

    def status(self) -> dict:
        next_run = None
        if self._scheduler:
            job = self._scheduler.get_job("price_sync")
            next_run = job.next_run_time if job else None
        return {
            "scheduler_running": self._running,
            "is_syncing": self.is_syncing,
            "last_sync_time": self.last_sync_time,
            "last_success": self.last_report.success if self.last_report else None,
            "last_message": self.last_report.message if self.last_report else None,
            "sync_count": self.sync_count,
            "interval_hours": self.interval_hours,
            "next_run_time": next_run,
        }
