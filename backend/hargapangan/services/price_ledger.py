"""Price Ledger - reconciles upstream snapshots with stored prices and manual overrides"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.config import settings
from hargapangan.models.override import PriceOverride
from hargapangan.models.price_point import PricePoint
from hargapangan.services.audit import record_audit
from hargapangan.services.commodity_registry import CommodityRegistry
from hargapangan.services.price_api_client import PriceSnapshot, is_plausible_price

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    notable_changes: List[dict] = field(default_factory=list)

    @property
    def saved_count(self) -> int:
        return self.inserted + self.updated + self.unchanged

    @property
    def skipped_count(self) -> int:
        return self.skipped

    def summary(self, error_sample: int = 5) -> dict:
        return {
            "saved": self.saved_count,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "error_count": len(self.errors),
            "errors": self.errors[:error_sample],
            "notable_changes": self.notable_changes,
        }


def effective_price(snapshot: PriceSnapshot) -> Optional[Decimal]:
    """Today's price when valid, else yesterday's when valid, else None."""
    if is_plausible_price(snapshot.price_today):
        return snapshot.price_today
    if is_plausible_price(snapshot.price_yesterday):
        return snapshot.price_yesterday
    return None


def region_clause(region_id: Optional[int]):
    """Rows for one region, or national rows when none is given."""
    if region_id is None:
        return PricePoint.region_id.is_(None)
    return PricePoint.region_id == region_id


class PriceLedger:
    """
    Writes synced prices into the price_points table.

    Manual data always wins: an override-flagged row for (commodity, date,
    region) at any level blocks the write, and the ledger never touches the
    override flag. Each row is committed on its own so a retry after a
    partial failure simply re-runs the whole batch.
    """

    def __init__(self, db: AsyncSession, registry: Optional[CommodityRegistry] = None):
        self.db = db
        self.registry = registry or CommodityRegistry(db)

    async def has_active_override(self, commodity_id: int, on_date: date, region_id: Optional[int]) -> bool:
        result = await self.db.execute(
            select(PricePoint.id).where(
                PricePoint.commodity_id == commodity_id,
                PricePoint.date == on_date,
                region_clause(region_id),
                PricePoint.is_override.is_(True),
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _find_api_row(
        self, commodity_id: int, on_date: date, region_id: Optional[int], level: str
    ) -> Optional[PricePoint]:
        result = await self.db.execute(
            select(PricePoint).where(
                PricePoint.commodity_id == commodity_id,
                PricePoint.date == on_date,
                region_clause(region_id),
                PricePoint.source == "api",
                PricePoint.level == level,
            )
        )
        return result.scalars().first()

    async def reconcile(
        self,
        on_date: date,
        level: str,
        snapshots: Sequence[PriceSnapshot],
        region_id: Optional[int] = None,
    ) -> ReconcileResult:
        result = ReconcileResult()

        for snapshot in snapshots:
            label = snapshot.name or snapshot.external_id
            try:
                try:
                    commodity = await self.registry.resolve(snapshot)
                    await self.db.commit()
                except SQLAlchemyError as e:
                    await self.db.rollback()
                    logger.warning("Could not resolve commodity %s: %s", label, e)
                    result.skipped += 1
                    continue

                price = effective_price(snapshot)
                if price is None:
                    logger.debug("Skipping %s - no valid price (today=%s, yesterday=%s)",
                                 label, snapshot.price_today, snapshot.price_yesterday)
                    result.skipped += 1
                    continue

                if await self.has_active_override(commodity.id, on_date, region_id):
                    logger.info("Skipping %s - manual override exists for %s", commodity.name, on_date)
                    result.skipped += 1
                    continue

                await self._write(result, commodity.id, commodity.name, on_date, level, region_id, price)

            except SQLAlchemyError as e:
                await self.db.rollback()
                message = f"Error syncing price for {label}: {e}"
                logger.error(message)
                result.errors.append(message)

        logger.info(
            "Reconciled %d snapshots for %s/%s: %d inserted, %d updated, %d unchanged, %d skipped, %d errors",
            len(snapshots), on_date, level, result.inserted, result.updated,
            result.unchanged, result.skipped, len(result.errors),
        )
        return result

    async def _write(
        self,
        result: ReconcileResult,
        commodity_id: int,
        commodity_name: str,
        on_date: date,
        level: str,
        region_id: Optional[int],
        price: Decimal,
    ):
        row = await self._find_api_row(commodity_id, on_date, region_id, level)

        if row is None:
            self.db.add(PricePoint(
                commodity_id=commodity_id,
                region_id=region_id,
                price=price,
                date=on_date,
                source="api",
                is_override=False,
                level=level,
            ))
            try:
                await self.db.commit()
                result.inserted += 1
                return
            except IntegrityError:
                # Another writer inserted the same key first; fall through to update
                await self.db.rollback()
                row = await self._find_api_row(commodity_id, on_date, region_id, level)
                if row is None:
                    raise

        old_price = Decimal(str(row.price))
        if old_price == price:
            result.unchanged += 1
            return

        row.price = price
        await self.db.commit()
        result.updated += 1

        change_percent = abs(price - old_price) / old_price * 100 if old_price > 0 else Decimal(0)
        if change_percent > Decimal(str(settings.NOTABLE_CHANGE_PERCENT)):
            logger.info("Price updated for %s: %s -> %s (%.1f%% change)",
                        commodity_name, old_price, price, change_percent)
            result.notable_changes.append({
                "commodity_id": commodity_id,
                "commodity_name": commodity_name,
                "old_price": float(old_price),
                "new_price": float(price),
                "change_percentage": round(float(change_percent), 2),
            })

    async def purge_expired_overrides(self, now: Optional[datetime] = None) -> int:
        """
        Remove override-flagged rows not touched within OVERRIDE_TTL_HOURS.

        Their override records go with them; the audit entry keeps the
        removed values.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=settings.OVERRIDE_TTL_HOURS)

        result = await self.db.execute(
            select(PricePoint).where(
                PricePoint.is_override.is_(True),
                PricePoint.updated_at < cutoff,
            )
        )
        stale = result.scalars().all()
        if not stale:
            return 0

        ids = [p.id for p in stale]
        snapshot = [
            {"id": p.id, "commodity_id": p.commodity_id, "date": p.date, "price": p.price, "level": p.level}
            for p in stale
        ]

        await self.db.execute(delete(PriceOverride).where(PriceOverride.price_point_id.in_(ids)))
        await self.db.execute(delete(PricePoint).where(PricePoint.id.in_(ids)))
        await record_audit(
            self.db,
            action="override_expired",
            entity_type="price",
            old_values={"price_points": snapshot},
            new_values={"cutoff": cutoff},
            commit=False,
        )
        await self.db.commit()

        logger.info("Cleaned up %d expired overrides", len(ids))
        return len(ids)
