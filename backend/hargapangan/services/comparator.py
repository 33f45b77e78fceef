"""Comparator - API vs manual comparison, day-over-day series and aggregate statistics"""
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.errors import CommodityNotFound, ValidationFailed
from hargapangan.models.commodity import Commodity
from hargapangan.models.price_point import PricePoint
from hargapangan.services.price_ledger import region_clause

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}

# Level used when a day has several automatic rows
PREFERRED_LEVEL = "konsumen"


def classify_trend(delta: Optional[float]) -> str:
    if delta is None or delta == 0:
        return "stable"
    return "up" if delta > 0 else "down"


def percent_change(start: Decimal, end: Decimal) -> Optional[float]:
    if start is None or end is None or start == 0:
        return None
    return round(float((end - start) / start * 100), 2)


def select_active(rows: Iterable[PricePoint]) -> Optional[PricePoint]:
    """Manual override when present, else the automatic row (consumer level first)."""
    rows = list(rows)
    for row in rows:
        if row.is_override:
            return row
    api_rows = [r for r in rows if r.source == "api"]
    for row in api_rows:
        if row.level == PREFERRED_LEVEL:
            return row
    if api_rows:
        return api_rows[0]
    return rows[0] if rows else None


def commodity_info(commodity: Commodity) -> dict:
    return {
        "id": commodity.id,
        "name": commodity.name,
        "unit": commodity.unit,
        "category": commodity.category,
        "image_url": commodity.image_url,
    }


@dataclass
class SeriesStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    current: float = 0.0
    change_percentage: float = 0.0


@dataclass
class Mover:
    commodity_id: int
    name: str
    category: str
    start_date: date
    end_date: date
    start_price: float
    end_price: float
    change_percentage: float
    trend: str = field(default="stable")


class Comparator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _points(
        self,
        start: date,
        end: date,
        commodity_id: Optional[int] = None,
        region_id: Optional[int] = None,
    ) -> List[Tuple[PricePoint, Commodity]]:
        query = (
            select(PricePoint, Commodity)
            .join(Commodity, Commodity.id == PricePoint.commodity_id)
            .where(PricePoint.date.between(start, end))
        )
        if commodity_id is not None:
            query = query.where(PricePoint.commodity_id == commodity_id)
        query = query.where(region_clause(region_id))
        query = query.order_by(PricePoint.commodity_id, PricePoint.date, PricePoint.id)

        result = await self.db.execute(query)
        return [tuple(row) for row in result.all()]

    def _active_by_day(
        self, points: List[Tuple[PricePoint, Commodity]]
    ) -> Dict[int, "OrderedDict[date, PricePoint]"]:
        grouped: Dict[int, Dict[date, List[PricePoint]]] = defaultdict(lambda: defaultdict(list))
        for point, _ in points:
            grouped[point.commodity_id][point.date].append(point)

        active: Dict[int, OrderedDict] = {}
        for commodity_id, by_day in grouped.items():
            active[commodity_id] = OrderedDict(
                (day, select_active(rows)) for day, rows in sorted(by_day.items())
            )
        return active

    async def compare_day(self, on_date: date, region_id: Optional[int] = None) -> List[dict]:
        """API price vs manual price per commodity for one day."""
        points = await self._points(on_date, on_date, region_id=region_id)

        comparison: "OrderedDict[int, dict]" = OrderedDict()
        rows_by_commodity: Dict[int, List[PricePoint]] = defaultdict(list)
        for point, commodity in points:
            rows_by_commodity[commodity.id].append(point)
            comparison.setdefault(commodity.id, {"commodity": commodity_info(commodity)})

        for commodity_id, rows in rows_by_commodity.items():
            api_rows = [r for r in rows if r.source == "api"]
            manual_rows = [r for r in rows if r.source == "manual"]
            api_row = select_active(api_rows) if api_rows else None
            manual_row = manual_rows[0] if manual_rows else None
            active_row = select_active(rows)

            api_price = Decimal(str(api_row.price)) if api_row else None
            manual_price = Decimal(str(manual_row.price)) if manual_row else None

            delta = delta_pct = None
            if api_price is not None and manual_price is not None:
                delta = float(manual_price - api_price)
                delta_pct = percent_change(api_price, manual_price)

            comparison[commodity_id].update({
                "api_price": float(api_price) if api_price is not None else None,
                "manual_price": float(manual_price) if manual_price is not None else None,
                "active_price": float(active_row.price) if active_row else None,
                "is_override": bool(active_row and active_row.is_override),
                "delta": delta,
                "delta_percentage": delta_pct,
            })

        return list(comparison.values())

    async def day_over_day(
        self,
        commodity_id: int,
        from_date: date,
        to_date: date,
        region_id: Optional[int] = None,
    ) -> dict:
        if from_date > to_date:
            raise ValidationFailed("from_date must not be after to_date")

        commodity = await self.db.get(Commodity, commodity_id)
        if commodity is None:
            raise CommodityNotFound(f"Commodity {commodity_id} not found")

        points = await self._points(from_date, to_date, commodity_id=commodity_id, region_id=region_id)
        by_day = self._active_by_day(points).get(commodity_id, OrderedDict())

        series = []
        previous: Optional[Decimal] = None
        for day, point in by_day.items():
            price = Decimal(str(point.price))
            delta = float(price - previous) if previous is not None else None
            series.append({
                "date": day,
                "price": float(price),
                "source": point.source,
                "is_override": bool(point.is_override),
                "level": point.level,
                "delta": delta,
                "delta_percentage": percent_change(previous, price) if previous is not None else None,
                "trend": classify_trend(delta),
            })
            previous = price

        values = [item["price"] for item in series]
        if values:
            stats = SeriesStats(
                min=min(values),
                max=max(values),
                avg=round(sum(values) / len(values), 2),
                current=values[-1],
                change_percentage=(
                    percent_change(Decimal(str(values[0])), Decimal(str(values[-1]))) or 0.0
                    if len(values) > 1 else 0.0
                ),
            )
        else:
            stats = SeriesStats()

        return {
            "commodity": commodity_info(commodity),
            "from_date": from_date,
            "to_date": to_date,
            "history": series,
            "statistics": stats.__dict__,
        }

    async def top_movers(
        self,
        start: date,
        end: date,
        n: int = 10,
        region_id: Optional[int] = None,
    ) -> List[Mover]:
        """Commodities ranked by absolute % change between first and last price in the window."""
        points = await self._points(start, end, region_id=region_id)
        commodities = {c.id: c for _, c in points}

        movers = []
        for commodity_id, by_day in self._active_by_day(points).items():
            if len(by_day) < 2:
                continue
            days = list(by_day.keys())
            first, last = by_day[days[0]], by_day[days[-1]]
            change = percent_change(Decimal(str(first.price)), Decimal(str(last.price)))
            if change is None:
                continue
            commodity = commodities[commodity_id]
            movers.append(Mover(
                commodity_id=commodity_id,
                name=commodity.name,
                category=commodity.category,
                start_date=days[0],
                end_date=days[-1],
                start_price=float(first.price),
                end_price=float(last.price),
                change_percentage=change,
                trend=classify_trend(change),
            ))

        movers.sort(key=lambda m: abs(m.change_percentage), reverse=True)
        return movers[:n]

    async def current_prices(
        self,
        on_date: date,
        region_id: Optional[int] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[dict], int]:
        """Prices for a day with the gap against the previous day."""
        query = (
            select(PricePoint, Commodity)
            .join(Commodity, Commodity.id == PricePoint.commodity_id)
            .where(PricePoint.date == on_date, Commodity.is_active.is_(True))
        )
        query = query.where(region_clause(region_id))
        if category:
            query = query.where(Commodity.category == category)
        if search:
            query = query.where(Commodity.name.ilike(f"%{search}%"))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(PricePoint.commodity_id, PricePoint.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = result.all()

        yesterday = on_date - timedelta(days=1)
        previous = await self._points(yesterday, yesterday, region_id=region_id)
        previous_active = {
            cid: next(iter(by_day.values()))
            for cid, by_day in self._active_by_day(previous).items()
        }

        items = []
        for point, commodity in rows:
            price = Decimal(str(point.price))
            prev = previous_active.get(commodity.id)
            prev_price = Decimal(str(prev.price)) if prev else None
            gap = float(price - prev_price) if prev_price is not None else 0.0
            items.append({
                "id": point.id,
                "commodity": commodity_info(commodity),
                "price": float(price),
                "yesterday_price": float(prev_price) if prev_price is not None else None,
                "gap": round(gap, 2),
                "gap_percentage": percent_change(prev_price, price) if prev_price is not None else 0.0,
                "gap_change": classify_trend(gap),
                "source": point.source,
                "is_override": bool(point.is_override),
                "date": point.date,
                "level": point.level,
            })
        return items, total

    async def period_statistics(
        self,
        period: str,
        today: date,
        region_id: Optional[int] = None,
        top_n: int = 10,
    ) -> dict:
        days = PERIOD_DAYS.get(period, PERIOD_DAYS["7d"])
        start = today - timedelta(days=days)

        query = (
            select(
                PricePoint.commodity_id,
                Commodity.name,
                Commodity.category,
                func.avg(PricePoint.price).label("avg_price"),
                func.min(PricePoint.price).label("min_price"),
                func.max(PricePoint.price).label("max_price"),
                func.count(PricePoint.id).label("data_points"),
            )
            .join(Commodity, Commodity.id == PricePoint.commodity_id)
            .where(PricePoint.date.between(start, today))
            .group_by(PricePoint.commodity_id, Commodity.name, Commodity.category)
            .order_by(PricePoint.commodity_id)
        )
        query = query.where(region_clause(region_id))

        result = await self.db.execute(query)
        statistics = [
            {
                "commodity_id": row.commodity_id,
                "commodity_name": row.name,
                "commodity_category": row.category,
                "avg_price": round(float(row.avg_price or 0), 2),
                "min_price": float(row.min_price or 0),
                "max_price": float(row.max_price or 0),
                "data_points": int(row.data_points or 0),
            }
            for row in result.all()
        ]

        movers = await self.top_movers(start, today, n=top_n, region_id=region_id)
        return {
            "period": period if period in PERIOD_DAYS else "7d",
            "date_range": {"start": start, "end": today},
            "statistics": statistics,
            "top_movers": [m.__dict__ for m in movers],
        }

    async def export_rows(self, start: Optional[date] = None, end: Optional[date] = None) -> List[dict]:
        query = (
            select(PricePoint, Commodity)
            .join(Commodity, Commodity.id == PricePoint.commodity_id)
            .order_by(PricePoint.date.desc(), PricePoint.commodity_id)
        )
        if start and end:
            query = query.where(PricePoint.date.between(start, end))

        result = await self.db.execute(query)
        return [
            {
                "date": point.date,
                "commodity": commodity.name,
                "category": commodity.category,
                "unit": commodity.unit,
                "price": float(point.price),
                "source": point.source,
                "is_override": bool(point.is_override),
                "level": point.level,
            }
            for point, commodity in result.all()
        ]
