from hargapangan.models.user import User
from hargapangan.models.region import Region
from hargapangan.models.commodity import Commodity, CustomCommodity
from hargapangan.models.price_point import PricePoint
from hargapangan.models.override import PriceOverride
from hargapangan.models.market_price import MarketPriceReport, MarketPriceImage
from hargapangan.models.audit import AuditLogEntry

__all__ = [
    "User",
    "Region",
    "Commodity",
    "CustomCommodity",
    "PricePoint",
    "PriceOverride",
    "MarketPriceReport",
    "MarketPriceImage",
    "AuditLogEntry",
]
