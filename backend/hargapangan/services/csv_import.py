"""Bulk market price import from CSV"""
import csv
import io
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.config import settings
from hargapangan.core.errors import PriceServiceError, ValidationFailed
from hargapangan.models.user import User
from hargapangan.services.audit import record_audit
from hargapangan.services.commodity_registry import make_ref
from hargapangan.services.market_price_service import (
    MarketPriceInput,
    MarketPriceService,
    NewCustomCommodity,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("market_name", "price", "date_recorded")


@dataclass
class ImportSummary:
    batch_id: str
    total: int = 0
    imported: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def record_error(self, line: int, message: str, sample_size: int):
        self.failed += 1
        if len(self.errors) < sample_size:
            self.errors.append(f"Row {line}: {message}")


def _clean(row: dict, key: str) -> Optional[str]:
    value = row.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_row(row: dict) -> MarketPriceInput:
    """Turn one CSV row into a report input; raises ValidationFailed on bad data."""
    missing = [c for c in REQUIRED_COLUMNS if not _clean(row, c)]
    if missing:
        raise ValidationFailed(f"missing {', '.join(missing)}")

    try:
        price = Decimal(_clean(row, "price").replace(",", ""))
    except InvalidOperation:
        raise ValidationFailed(f"invalid price {row.get('price')!r}")
    if not price.is_finite():
        raise ValidationFailed(f"invalid price {row.get('price')!r}")

    try:
        recorded = date.fromisoformat(_clean(row, "date_recorded"))
    except ValueError:
        raise ValidationFailed(f"invalid date_recorded {row.get('date_recorded')!r} (expected YYYY-MM-DD)")

    commodity_id = _clean(row, "commodity_id")
    if commodity_id:
        try:
            commodity = make_ref(_clean(row, "commodity_source") or "national", int(commodity_id))
        except ValueError:
            raise ValidationFailed(f"invalid commodity_id {commodity_id!r}")
    else:
        name = _clean(row, "commodity_name")
        if not name:
            raise ValidationFailed("commodity_id or commodity_name is required")
        commodity = NewCustomCommodity(
            name=name,
            unit=_clean(row, "unit") or "kg",
            category=_clean(row, "commodity_category") or "lainnya",
        )

    return MarketPriceInput(
        market_name=_clean(row, "market_name"),
        price=price,
        date_recorded=recorded,
        commodity=commodity,
        market_type=(_clean(row, "market_type") or "traditional").lower(),
        market_location=_clean(row, "market_location"),
        province_name=_clean(row, "province_name"),
        city_name=_clean(row, "city_name"),
        quality_grade=(_clean(row, "quality_grade") or "standard").lower(),
        notes=_clean(row, "notes"),
        unit=_clean(row, "unit"),
    )


async def import_market_prices(
    db: AsyncSession,
    content: bytes,
    reporter: User,
    meta: Optional[dict] = None,
) -> ImportSummary:
    """
    Import every row of a CSV upload as a market price report.

    A bad row is counted and sampled into the summary; the rest of the batch
    still goes in. All imported rows share one batch id.
    """
    summary = ImportSummary(batch_id=str(uuid.uuid4()))
    sample_size = settings.IMPORT_ERROR_SAMPLE_SIZE

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("CSV file must be UTF-8 encoded")

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames or any(c not in reader.fieldnames for c in REQUIRED_COLUMNS):
        raise ValidationFailed(f"CSV header must include {', '.join(REQUIRED_COLUMNS)}")

    service = MarketPriceService(db, meta=meta)
    # Header is line 1
    for line, row in enumerate(reader, start=2):
        summary.total += 1
        try:
            data = parse_row(row)
            await service.create(data, reporter, source="import", import_batch_id=summary.batch_id)
            summary.imported += 1
        except PriceServiceError as e:
            # Raised before anything is flushed, so the session stays usable
            summary.record_error(line, e.message, sample_size)

    await record_audit(
        db,
        action="market_price_import",
        entity_type="market_price",
        user_id=reporter.id,
        new_values={
            "batch_id": summary.batch_id,
            "total": summary.total,
            "imported": summary.imported,
            "failed": summary.failed,
        },
        meta=meta,
    )
    logger.info("CSV import %s: %d/%d rows imported, %d failed",
                summary.batch_id, summary.imported, summary.total, summary.failed)
    return summary
