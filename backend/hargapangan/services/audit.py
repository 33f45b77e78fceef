"""Audit trail for security and administrative actions"""
import logging
from decimal import Decimal
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.models.audit import AuditLogEntry

logger = logging.getLogger(__name__)


def _jsonable(values: Optional[dict]) -> Optional[dict]:
    """Make Decimal/date values safe for a JSON column."""
    if values is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [convert(v) for v in value]
        return value

    return convert(values)


async def record_audit(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    user_id: Optional[int] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    meta: Optional[dict] = None,
    commit: bool = True,
) -> AuditLogEntry:
    """
    Append an audit entry.

    With commit=False the entry joins the caller's unit of work so it lands
    atomically with the change it describes.
    """
    meta = meta or {}
    entry = AuditLogEntry(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=_jsonable(old_values),
        new_values=_jsonable(new_values),
        ip_address=meta.get("ip_address"),
        user_agent=meta.get("user_agent"),
    )
    db.add(entry)
    if commit:
        await db.commit()

    logger.info("audit %s %s#%s by user %s", action, entity_type, entity_id, user_id)
    return entry
