"""Market price reports - field observations from traditional and modern markets"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.errors import (
    InvalidDecision,
    MarketPriceNotFound,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from hargapangan.models.commodity import Commodity, CustomCommodity
from hargapangan.models.market_price import (
    MARKET_TYPES,
    QUALITY_GRADES,
    MarketPriceImage,
    MarketPriceReport,
)
from hargapangan.models.price_point import PricePoint
from hargapangan.models.user import User
from hargapangan.services.audit import record_audit
from hargapangan.services.commodity_registry import (
    CommodityRef,
    CommodityRegistry,
    CustomCommodityRef,
    NationalCommodityRef,
)
from hargapangan.services.comparator import select_active
from hargapangan.services.evidence_storage import EvidenceStorage, StoredImage, phash_distance

logger = logging.getLogger(__name__)

# Perceptual hashes this close are treated as the same photo
DUPLICATE_PHASH_DISTANCE = 4

EDITABLE_FIELDS = (
    "market_name",
    "market_type",
    "market_location",
    "province_name",
    "city_name",
    "price",
    "quality_grade",
    "date_recorded",
    "time_recorded",
    "notes",
    "latitude",
    "longitude",
)


@dataclass
class NewCustomCommodity:
    """Commodity not in the national list, created on first report"""
    name: str
    unit: str
    category: str
    description: Optional[str] = None


@dataclass
class MarketPriceInput:
    market_name: str
    price: Decimal
    date_recorded: date
    commodity: Union[CommodityRef, NewCustomCommodity]
    market_type: str = "traditional"
    market_location: Optional[str] = None
    province_name: Optional[str] = None
    city_name: Optional[str] = None
    quality_grade: str = "standard"
    time_recorded: Optional[time] = None
    notes: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    unit: Optional[str] = None


@dataclass
class MarketPriceFilters:
    commodity: Optional[CommodityRef] = None
    market_type: Optional[str] = None
    quality_grade: Optional[str] = None
    verification_status: Optional[str] = None
    source: Optional[str] = None
    market_name: Optional[str] = None
    province_name: Optional[str] = None
    city_name: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


def validate_report_fields(market_type: str, quality_grade: str, price: Decimal):
    if market_type not in MARKET_TYPES:
        raise ValidationFailed(f"market_type must be one of {', '.join(MARKET_TYPES)}")
    if quality_grade not in QUALITY_GRADES:
        raise ValidationFailed(f"quality_grade must be one of {', '.join(QUALITY_GRADES)}")
    if price is None or Decimal(str(price)) <= 0:
        raise ValidationFailed("price must be positive")


class MarketPriceService:
    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[EvidenceStorage] = None,
        meta: Optional[dict] = None,
    ):
        self.db = db
        self.storage = storage or EvidenceStorage()
        self.registry = CommodityRegistry(db)
        self.meta = meta or {}

    async def _commodity_for(
        self, commodity: Union[CommodityRef, NewCustomCommodity], reporter: Optional[User]
    ) -> Tuple[CommodityRef, Union[Commodity, CustomCommodity]]:
        if isinstance(commodity, NewCustomCommodity):
            if not (commodity.name and commodity.unit and commodity.category):
                raise ValidationFailed("New commodities need a name, unit and category")
            record = await self.registry.find_or_create_custom(
                name=commodity.name,
                unit=commodity.unit,
                category=commodity.category,
                created_by=reporter.id if reporter else None,
                description=commodity.description,
            )
            return CustomCommodityRef(record.id), record

        return commodity, await self.registry.resolve_reference(commodity)

    async def _check_duplicate(self, ref: CommodityRef, on_date: date, stored: StoredImage):
        result = await self.db.execute(
            select(MarketPriceReport.id, MarketPriceReport.image_phash).where(
                MarketPriceReport.commodity_id == ref.commodity_id,
                MarketPriceReport.commodity_source == ref.source,
                MarketPriceReport.date_recorded == on_date,
                MarketPriceReport.image_phash.is_not(None),
                MarketPriceReport.is_active.is_(True),
            )
        )
        for report_id, phash in result.all():
            if phash_distance(phash, stored.phash) <= DUPLICATE_PHASH_DISTANCE:
                raise ValidationFailed(
                    f"Evidence image duplicates report {report_id} for the same commodity and date"
                )

    async def create(
        self,
        data: MarketPriceInput,
        reporter: Optional[User],
        image: Optional[bytes] = None,
        source: str = "manual",
        import_batch_id: Optional[str] = None,
    ) -> MarketPriceReport:
        validate_report_fields(data.market_type, data.quality_grade, data.price)
        if not data.market_name:
            raise ValidationFailed("market_name is required")

        ref, commodity = await self._commodity_for(data.commodity, reporter)

        stored = None
        if image:
            stored = self.storage.save(image)
            try:
                await self._check_duplicate(ref, data.date_recorded, stored)
            except ValidationFailed:
                await self._release_file(stored.storage_key)
                raise

        report = MarketPriceReport(
            commodity_source=ref.source,
            commodity_id=ref.commodity_id,
            market_name=data.market_name,
            market_type=data.market_type,
            market_location=data.market_location,
            province_name=data.province_name,
            city_name=data.city_name,
            price=Decimal(str(data.price)),
            unit=data.unit or commodity.unit,
            quality_grade=data.quality_grade,
            date_recorded=data.date_recorded,
            time_recorded=data.time_recorded,
            image_path=stored.storage_key if stored else None,
            image_phash=stored.phash if stored else None,
            notes=data.notes,
            latitude=data.latitude,
            longitude=data.longitude,
            source=source,
            import_batch_id=import_batch_id,
            verification_status="pending",
            reported_by=reporter.id if reporter else None,
            is_active=True,
        )
        self.db.add(report)
        await self.db.commit()
        await self.db.refresh(report)

        logger.info("Market price %s recorded: %s at %s = %s",
                    report.id, commodity.name, report.market_name, report.price)
        return report

    async def get(self, report_id: int) -> MarketPriceReport:
        report = await self.db.get(MarketPriceReport, report_id)
        if report is None or not report.is_active:
            raise MarketPriceNotFound(f"Market price {report_id} not found")
        return report

    async def commodity_name(self, report: MarketPriceReport) -> Optional[str]:
        model = CustomCommodity if report.commodity_source == "custom" else Commodity
        commodity = await self.db.get(model, report.commodity_id)
        return commodity.name if commodity else None

    async def list(
        self,
        filters: Optional[MarketPriceFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[MarketPriceReport], int]:
        filters = filters or MarketPriceFilters()
        query = select(MarketPriceReport).where(MarketPriceReport.is_active.is_(True))

        if filters.commodity is not None:
            query = query.where(
                MarketPriceReport.commodity_id == filters.commodity.commodity_id,
                MarketPriceReport.commodity_source == filters.commodity.source,
            )
        for column in ("market_type", "quality_grade", "verification_status", "source"):
            value = getattr(filters, column)
            if value:
                query = query.where(getattr(MarketPriceReport, column) == value)
        for column in ("market_name", "province_name", "city_name"):
            value = getattr(filters, column)
            if value:
                query = query.where(getattr(MarketPriceReport, column).ilike(f"%{value}%"))
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(or_(
                MarketPriceReport.market_name.ilike(pattern),
                MarketPriceReport.market_location.ilike(pattern),
                MarketPriceReport.notes.ilike(pattern),
            ))
        if filters.date_from:
            query = query.where(MarketPriceReport.date_recorded >= filters.date_from)
        if filters.date_to:
            query = query.where(MarketPriceReport.date_recorded <= filters.date_to)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(MarketPriceReport.date_recorded.desc(), MarketPriceReport.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    def _check_owner(self, report: MarketPriceReport, actor: User):
        if not actor.is_elevated and report.reported_by != actor.id:
            raise PermissionDenied("Only the reporter or an admin can change this report")

    async def update(self, report_id: int, changes: dict, actor: User) -> MarketPriceReport:
        report = await self.get(report_id)
        self._check_owner(report, actor)

        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
        validate_report_fields(
            changes.get("market_type", report.market_type),
            changes.get("quality_grade", report.quality_grade),
            changes.get("price", report.price),
        )

        old_values = {k: getattr(report, k) for k in changes}
        for field, value in changes.items():
            setattr(report, field, value)

        # Edited data needs a fresh review
        if changes and report.verification_status != "pending" and not actor.is_elevated:
            report.verification_status = "pending"
            report.verified_by = None
            report.verified_at = None

        await record_audit(
            self.db,
            action="market_price_updated",
            entity_type="market_price",
            entity_id=report.id,
            user_id=actor.id,
            old_values=old_values,
            new_values=changes,
            meta=self.meta,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(report)
        return report

    async def add_image(self, report_id: int, data: bytes, actor: User) -> MarketPriceImage:
        report = await self.get(report_id)
        self._check_owner(report, actor)

        stored = self.storage.save(data)
        position = max((image.position for image in report.images), default=-1) + 1
        image = MarketPriceImage(
            report_id=report.id,
            position=position,
            storage_key=stored.storage_key,
            sha256=stored.sha256,
        )
        report.images.append(image)
        await self.db.commit()
        await self.db.refresh(image)
        return image

    async def _release_file(self, storage_key: Optional[str], exclude_image_id: Optional[int] = None):
        """Delete a stored file unless another report or image still points at it."""
        if not storage_key:
            return
        image_refs = select(func.count(MarketPriceImage.id)).where(MarketPriceImage.storage_key == storage_key)
        if exclude_image_id is not None:
            image_refs = image_refs.where(MarketPriceImage.id != exclude_image_id)
        report_refs = select(func.count(MarketPriceReport.id)).where(MarketPriceReport.image_path == storage_key)

        remaining = (await self.db.execute(image_refs)).scalar() + (await self.db.execute(report_refs)).scalar()
        if remaining == 0:
            self.storage.delete(storage_key)

    async def remove_image(self, report_id: int, image_id: int, actor: User):
        report = await self.get(report_id)
        self._check_owner(report, actor)

        image = next((i for i in report.images if i.id == image_id), None)
        if image is None:
            raise NotFound(f"Image {image_id} not found on market price {report_id}")

        storage_key = image.storage_key
        report.images.remove(image)
        await self.db.commit()
        await self._release_file(storage_key)

    async def verify(
        self, report_id: int, status: str, actor: User, notes: Optional[str] = None
    ) -> MarketPriceReport:
        if not actor.is_elevated:
            raise PermissionDenied("Only admins can verify market prices")
        if status not in ("verified", "rejected"):
            raise InvalidDecision("verification_status must be verified or rejected")

        report = await self.get(report_id)
        old_status = report.verification_status
        report.verification_status = status
        report.verified_by = actor.id
        report.verified_at = datetime.now(timezone.utc)
        if notes:
            report.notes = f"{report.notes}\n{notes}" if report.notes else notes

        await record_audit(
            self.db,
            action=f"market_price_{status}",
            entity_type="market_price",
            entity_id=report.id,
            user_id=actor.id,
            old_values={"verification_status": old_status},
            new_values={"verification_status": status},
            meta=self.meta,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(report)
        return report

    async def delete(self, report_id: int, actor: User):
        report = await self.get(report_id)
        self._check_owner(report, actor)

        keys = [report.image_path] + [image.storage_key for image in report.images]
        await record_audit(
            self.db,
            action="market_price_deleted",
            entity_type="market_price",
            entity_id=report.id,
            user_id=actor.id,
            old_values={
                "commodity_id": report.commodity_id,
                "commodity_source": report.commodity_source,
                "market_name": report.market_name,
                "price": report.price,
                "date_recorded": report.date_recorded,
            },
            meta=self.meta,
            commit=False,
        )
        await self.db.delete(report)
        await self.db.commit()

        for key in keys:
            await self._release_file(key)

    async def compare(
        self,
        ref: CommodityRef,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        province_name: Optional[str] = None,
    ) -> dict:
        """Per-market price spread for one commodity, with the synced national price when there is one."""
        commodity = await self.registry.resolve_reference(ref)

        query = (
            select(
                MarketPriceReport.market_name,
                MarketPriceReport.market_type,
                func.avg(MarketPriceReport.price).label("avg_price"),
                func.min(MarketPriceReport.price).label("min_price"),
                func.max(MarketPriceReport.price).label("max_price"),
                func.count(MarketPriceReport.id).label("reports"),
                func.max(MarketPriceReport.date_recorded).label("latest_date"),
            )
            .where(
                MarketPriceReport.commodity_id == ref.commodity_id,
                MarketPriceReport.commodity_source == ref.source,
                MarketPriceReport.is_active.is_(True),
                MarketPriceReport.verification_status != "rejected",
            )
            .group_by(MarketPriceReport.market_name, MarketPriceReport.market_type)
            .order_by(func.avg(MarketPriceReport.price))
        )
        if date_from:
            query = query.where(MarketPriceReport.date_recorded >= date_from)
        if date_to:
            query = query.where(MarketPriceReport.date_recorded <= date_to)
        if province_name:
            query = query.where(MarketPriceReport.province_name.ilike(f"%{province_name}%"))

        markets = [
            {
                "market_name": row.market_name,
                "market_type": row.market_type,
                "avg_price": round(float(row.avg_price or 0), 2),
                "min_price": float(row.min_price or 0),
                "max_price": float(row.max_price or 0),
                "reports": int(row.reports),
                "latest_date": row.latest_date,
            }
            for row in (await self.db.execute(query)).all()
        ]

        reference_price = None
        if isinstance(ref, NationalCommodityRef):
            latest = (await self.db.execute(
                select(func.max(PricePoint.date)).where(
                    PricePoint.commodity_id == ref.commodity_id,
                    PricePoint.region_id.is_(None),
                )
            )).scalar()
            if latest is not None:
                rows = (await self.db.execute(
                    select(PricePoint).where(
                        PricePoint.commodity_id == ref.commodity_id,
                        PricePoint.region_id.is_(None),
                        PricePoint.date == latest,
                    )
                )).scalars().all()
                active = select_active(rows)
                if active is not None:
                    reference_price = {"date": latest, "price": float(active.price), "source": active.source}

        return {
            "commodity": {"id": commodity.id, "name": commodity.name, "unit": commodity.unit, "source": ref.source},
            "markets": markets,
            "reference_price": reference_price,
        }
