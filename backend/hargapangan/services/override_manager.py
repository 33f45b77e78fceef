"""Override Manager - manual price corrections with an approval workflow"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.config import settings
from hargapangan.core.errors import (
    AlreadyProcessed,
    CommodityNotFound,
    InvalidDecision,
    NoCurrentPrice,
    OverrideNotFound,
    PermissionDenied,
    ValidationFailed,
)
from hargapangan.models.commodity import Commodity
from hargapangan.models.override import PriceOverride
from hargapangan.models.price_point import PricePoint
from hargapangan.models.user import User
from hargapangan.services.audit import record_audit
from hargapangan.services.evidence_storage import EvidenceStorage

logger = logging.getLogger(__name__)

DECISIONS = {"approve": "approved", "approved": "approved", "reject": "rejected", "rejected": "rejected"}


def delta_percent(current: Decimal, requested: Decimal) -> Decimal:
    if current <= 0:
        return Decimal("Infinity")
    return abs(requested - current) / current * 100


def override_snapshot(override: PriceOverride) -> dict:
    return {
        "id": override.id,
        "price_point_id": override.price_point_id,
        "original_price": override.original_price,
        "original_source": override.original_source,
        "override_price": override.override_price,
        "reason": override.reason,
        "status": override.status,
        "requested_by": override.requested_by,
        "approved_by": override.approved_by,
        "applied_at": override.applied_at,
        "expires_at": override.expires_at,
    }


class OverrideManager:
    """
    Creates, decides and deletes price overrides.

    An override whose delta against the current price exceeds the approval
    threshold stays pending until someone other than the requester approves
    it, unless the requester is an admin. Applying an override marks the
    price point as manual so the sync engine leaves it alone.
    """

    def __init__(self, db: AsyncSession, meta: Optional[dict] = None, storage: Optional[EvidenceStorage] = None):
        self.db = db
        self.meta = meta or {}
        self.storage = storage or EvidenceStorage()

    async def _current_price_point(
        self, commodity_id: int, on_date: date, region_id: Optional[int]
    ) -> Optional[PricePoint]:
        region_clause = PricePoint.region_id.is_(None) if region_id is None else PricePoint.region_id == region_id
        result = await self.db.execute(
            select(PricePoint)
            .where(
                PricePoint.commodity_id == commodity_id,
                PricePoint.date == on_date,
                region_clause,
            )
            # An already overridden row is the one currently in effect
            .order_by(PricePoint.is_override.desc(), PricePoint.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _apply(self, price_point: PricePoint, override: PriceOverride):
        # Snapshot whatever is in effect right now, which may be another override
        override.original_price = Decimal(str(price_point.price))
        override.original_source = price_point.source
        override.original_is_override = bool(price_point.is_override)
        override.applied_at = datetime.now(timezone.utc)
        price_point.price = override.override_price
        price_point.source = "manual"
        price_point.is_override = True

    async def _applied_after(self, override: PriceOverride) -> Optional[PriceOverride]:
        """The approved override stacked directly on top of this one, if any."""
        result = await self.db.execute(
            select(PriceOverride)
            .where(
                PriceOverride.price_point_id == override.price_point_id,
                PriceOverride.status == "approved",
                PriceOverride.id != override.id,
                or_(
                    PriceOverride.applied_at > override.applied_at,
                    and_(PriceOverride.applied_at == override.applied_at, PriceOverride.id > override.id),
                ),
            )
            .order_by(PriceOverride.applied_at.asc(), PriceOverride.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        commodity_id: int,
        on_date: date,
        requested_price: Decimal,
        reason: str,
        requester: User,
        region_id: Optional[int] = None,
        source_info: Optional[str] = None,
        evidence: Optional[bytes] = None,
    ) -> PriceOverride:
        if requested_price is None or requested_price <= 0:
            raise ValidationFailed("Override price must be positive")

        commodity = await self.db.get(Commodity, commodity_id)
        if commodity is None:
            raise CommodityNotFound(f"Commodity {commodity_id} not found")

        price_point = await self._current_price_point(commodity_id, on_date, region_id)
        if price_point is None:
            raise NoCurrentPrice(f"No current price for {commodity.name} on {on_date}")

        # Stored only once the request is known to be valid
        evidence_path = self.storage.save(evidence).storage_key if evidence else None

        current = Decimal(str(price_point.price))
        delta = delta_percent(current, requested_price)
        needs_approval = delta > Decimal(str(settings.OVERRIDE_APPROVAL_THRESHOLD_PERCENT))

        status = "pending" if needs_approval and not requester.is_elevated else "approved"

        override = PriceOverride(
            price_point_id=price_point.id,
            original_price=current,
            original_source=price_point.source,
            original_is_override=bool(price_point.is_override),
            override_price=requested_price,
            reason=reason,
            source_info=source_info,
            evidence_path=evidence_path,
            requested_by=requester.id,
            approved_by=requester.id if status == "approved" else None,
            status=status,
            expires_at=PriceOverride.compute_expiry(settings.OVERRIDE_TTL_HOURS),
        )
        self.db.add(override)

        if status == "approved":
            self._apply(price_point, override)
            await self.db.flush()
            await record_audit(
                self.db,
                action="price_override",
                entity_type="price",
                entity_id=price_point.id,
                user_id=requester.id,
                old_values={"price": current, "source": override.original_source},
                new_values={"price": requested_price, "source": "manual", "override_id": override.id},
                meta=self.meta,
                commit=False,
            )

        await self.db.commit()
        await self.db.refresh(override)

        logger.info("Override %s for %s on %s: %s -> %s (%.1f%%, %s)",
                    override.id, commodity.name, on_date, current, requested_price, delta, status)
        return override

    async def _get(self, override_id: int) -> PriceOverride:
        override = await self.db.get(PriceOverride, override_id)
        if override is None:
            raise OverrideNotFound(f"Override {override_id} not found")
        return override

    async def _fail(self, override: PriceOverride, actor: User, error: Exception, attempted: dict):
        """Audit a rejected state transition, then raise it."""
        await record_audit(
            self.db,
            action="override_decision_failed",
            entity_type="price_override",
            entity_id=override.id,
            user_id=actor.id,
            old_values={"status": override.status},
            new_values={**attempted, "error": getattr(error, "code", str(error))},
            meta=self.meta,
        )
        raise error

    async def decide(
        self,
        override_id: int,
        decision: str,
        approver: User,
        rejection_reason: Optional[str] = None,
    ) -> PriceOverride:
        override = await self._get(override_id)
        attempted = {"decision": decision}

        if override.status != "pending":
            await self._fail(override, approver, AlreadyProcessed("Override has already been processed"), attempted)

        status = DECISIONS.get((decision or "").lower())
        if status is None:
            await self._fail(
                override, approver, InvalidDecision("Decision must be approve or reject"), attempted
            )

        if status == "approved" and override.requested_by == approver.id and not approver.is_elevated:
            await self._fail(
                override, approver, PermissionDenied("Overrides cannot be self-approved"), attempted
            )

        price_point = None
        if status == "approved":
            price_point = await self.db.get(PricePoint, override.price_point_id)
            if price_point is None:
                await self._fail(
                    override,
                    approver,
                    NoCurrentPrice(f"Price point {override.price_point_id} no longer exists"),
                    attempted,
                )

        old_status = override.status
        override.status = status
        override.approved_by = approver.id
        override.rejection_reason = rejection_reason if status == "rejected" else None
        if price_point is not None:
            self._apply(price_point, override)

        await record_audit(
            self.db,
            action=f"override_{status}",
            entity_type="price_override",
            entity_id=override.id,
            user_id=approver.id,
            old_values={"status": old_status},
            new_values={"status": status, "rejection_reason": rejection_reason},
            meta=self.meta,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(override)

        logger.info("Override %s %s by user %s", override.id, status, approver.id)
        return override

    async def delete(self, override_id: int, actor: User) -> None:
        """
        Remove an override.

        Deleting the override in effect restores the price it replaced. When a
        later override is stacked on top, the price point is left alone and the
        later override takes over this one's snapshot instead.
        """
        override = await self._get(override_id)
        snapshot = override_snapshot(override)

        if override.status == "approved":
            successor = await self._applied_after(override)
            if successor is not None:
                successor.original_price = override.original_price
                successor.original_source = override.original_source
                successor.original_is_override = override.original_is_override
            else:
                price_point = await self.db.get(PricePoint, override.price_point_id)
                if price_point is not None:
                    price_point.price = override.original_price
                    price_point.source = override.original_source
                    price_point.is_override = override.original_is_override

        await record_audit(
            self.db,
            action="override_deleted",
            entity_type="price_override",
            entity_id=override.id,
            user_id=actor.id,
            old_values=snapshot,
            meta=self.meta,
            commit=False,
        )
        await self.db.delete(override)
        await self.db.commit()

        logger.info("Override %s deleted by user %s", override_id, actor.id)

    async def list(
        self,
        status: Optional[str] = None,
        commodity_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Tuple[PriceOverride, PricePoint, Commodity]], int]:
        query = (
            select(PriceOverride, PricePoint, Commodity)
            .join(PricePoint, PricePoint.id == PriceOverride.price_point_id)
            .join(Commodity, Commodity.id == PricePoint.commodity_id)
        )
        if status:
            query = query.where(PriceOverride.status == status)
        if commodity_id:
            query = query.where(PricePoint.commodity_id == commodity_id)
        if start and end:
            query = query.where(PriceOverride.created_at.between(start, end))

        total = (await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )).scalar() or 0

        result = await self.db.execute(
            query.order_by(PriceOverride.created_at.desc(), PriceOverride.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [tuple(row) for row in result.all()], total
