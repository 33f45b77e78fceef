"""Commodity Registry - maps upstream commodities and custom ones to local records"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.errors import CommodityNotFound
from hargapangan.models.commodity import Commodity, CustomCommodity
from hargapangan.services.price_api_client import PriceSnapshot

logger = logging.getLogger(__name__)

# Order matters: first matching rule wins. Kept verbatim for compatibility
# with categories already stored (fish deliberately lands in "daging").
CATEGORY_KEYWORDS = [
    (("beras", "gkp", "gkg"), "beras"),
    (("cabai", "bawang"), "bumbu"),
    (("sapi", "ayam", "telur", "daging", "kerbau"), "daging"),
    (("ikan", "tongkol", "kembung", "bandeng"), "daging"),
    (("jagung", "kedelai"), "sayuran"),
    (("gula", "garam", "minyak", "tepung"), "lainnya"),
]


def classify_category(name: Optional[str]) -> str:
    if not name:
        return "lainnya"
    name_lower = name.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(keyword in name_lower for keyword in keywords):
            return category
    return "lainnya"


@dataclass(frozen=True)
class NationalCommodityRef:
    commodity_id: int
    source: str = "national"


@dataclass(frozen=True)
class CustomCommodityRef:
    commodity_id: int
    source: str = "custom"


CommodityRef = Union[NationalCommodityRef, CustomCommodityRef]


def make_ref(source: str, commodity_id: int) -> CommodityRef:
    if source == "custom":
        return CustomCommodityRef(commodity_id)
    return NationalCommodityRef(commodity_id)


class CommodityRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, snapshot: PriceSnapshot) -> Commodity:
        """
        Find-or-create the commodity for an upstream snapshot.

        Name, unit and icon follow upstream on later sightings; the category
        is only derived once, at creation.
        """
        result = await self.db.execute(
            select(Commodity).where(Commodity.external_id == snapshot.external_id)
        )
        commodity = result.scalar_one_or_none()

        if commodity is None:
            name = snapshot.name or f"Komoditas {snapshot.external_id}"
            commodity = Commodity(
                external_id=snapshot.external_id,
                name=name,
                unit=snapshot.unit or "Rp/kg",
                category=classify_category(name),
                image_url=snapshot.icon,
                is_active=True,
            )
            self.db.add(commodity)
            await self.db.flush()
            logger.info("Registered commodity %s (external_id=%s, category=%s)",
                        commodity.name, commodity.external_id, commodity.category)
            return commodity

        changed = {}
        if snapshot.name and snapshot.name != commodity.name:
            changed["name"] = snapshot.name
        if snapshot.unit and snapshot.unit != commodity.unit:
            changed["unit"] = snapshot.unit
        if snapshot.icon and snapshot.icon != commodity.image_url:
            changed["image_url"] = snapshot.icon

        if changed:
            for field, value in changed.items():
                setattr(commodity, field, value)
            await self.db.flush()
            logger.info("Updated commodity %s: %s", commodity.id, sorted(changed))

        return commodity

    async def get(self, commodity_id: int) -> Commodity:
        commodity = await self.db.get(Commodity, commodity_id)
        if commodity is None:
            raise CommodityNotFound(f"Commodity {commodity_id} not found")
        return commodity

    async def resolve_reference(self, ref: CommodityRef) -> Union[Commodity, CustomCommodity]:
        """Look a tagged commodity reference up in its own table."""
        if isinstance(ref, CustomCommodityRef):
            commodity = await self.db.get(CustomCommodity, ref.commodity_id)
        else:
            commodity = await self.db.get(Commodity, ref.commodity_id)

        if commodity is None:
            raise CommodityNotFound(f"{ref.source.title()} commodity {ref.commodity_id} not found")
        return commodity

    async def find_or_create_custom(
        self,
        name: str,
        unit: str,
        category: str,
        created_by: Optional[int] = None,
        description: Optional[str] = None,
    ) -> CustomCommodity:
        result = await self.db.execute(
            select(CustomCommodity).where(
                CustomCommodity.name == name,
                CustomCommodity.unit == unit,
                CustomCommodity.category == category,
            )
        )
        commodity = result.scalars().first()

        if commodity is None:
            commodity = CustomCommodity(
                name=name,
                unit=unit,
                category=category,
                description=description,
                created_by=created_by,
                is_active=True,
            )
            self.db.add(commodity)
            await self.db.flush()

        return commodity
