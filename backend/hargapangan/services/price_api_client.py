"""Client for the Badan Pangan Nasional price information API"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from hargapangan.core.config import settings
from hargapangan.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; hargapangan-sync/1.0)",
    "Accept": "application/json",
    "Accept-Language": "id-ID,id;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
}


class UpstreamPriceItem(BaseModel):
    """One row of the `harga-pangan-informasi` payload"""
    id: int
    name: Optional[str] = None
    satuan: Optional[str] = None
    today: Optional[Any] = None
    yesterday: Optional[Any] = None
    background: Optional[str] = None


class UpstreamEnvelope(BaseModel):
    status: str
    message: Optional[str] = None
    data: Optional[List[Any]] = None


@dataclass
class PriceSnapshot:
    """One commodity's price record for the current sync cycle"""
    external_id: int
    name: Optional[str]
    unit: Optional[str]
    icon: Optional[str]
    price_today: Optional[Decimal]
    price_yesterday: Optional[Decimal]


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def is_plausible_price(value: Optional[Decimal]) -> bool:
    """True when the price is present, positive and inside the plausibility band."""
    if value is None or value <= 0:
        return False
    return settings.PRICE_MIN <= value <= settings.PRICE_MAX


class PriceApiClient:
    """
    Pure fetch client for the upstream price panel.

    Every call is retried with exponential backoff; when the budget is spent
    the last failure surfaces as UpstreamUnavailable. Persistence is the
    caller's job.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.PRICE_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PRICE_API_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.PRICE_API_MAX_ATTEMPTS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.PRICE_API_BACKOFF_SECONDS
        )
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=DEFAULT_HEADERS,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _with_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        attempts: int,
        delay: float,
    ) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await fn()
            except (httpx.HTTPError, UpstreamUnavailable) as e:
                last_error = e
                logger.warning("Upstream attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt == attempts:
                    break
                await self._sleep(delay)
                delay *= 2

        raise UpstreamUnavailable(f"Price API unavailable after {attempts} attempts: {last_error}")

    async def _get_envelope(self, path: str, params: dict) -> List[Any]:
        client = await self._get_client()
        response = await client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()

        try:
            envelope = UpstreamEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamUnavailable(f"Malformed response envelope: {e}")

        if envelope.status != "success" or envelope.data is None:
            raise UpstreamUnavailable(f"API returned error: {envelope.message or envelope.status}")
        return envelope.data

    async def fetch_prices(
        self,
        province_id: Optional[int] = None,
        city_id: Optional[int] = None,
        level_id: int = 3,
    ) -> List[PriceSnapshot]:
        """Fetch current price snapshots (level 1=produsen, 2=grosir, 3=konsumen)."""
        params = {
            "province_id": province_id if province_id is not None else "",
            "city_id": city_id if city_id is not None else "",
            "level_harga_id": level_id,
        }

        async def _call() -> List[Any]:
            return await self._get_envelope("/front/harga-pangan-informasi", params)

        rows = await self._with_retry(_call, self.max_attempts, self.backoff_seconds)

        snapshots = []
        for raw in rows:
            try:
                item = UpstreamPriceItem.model_validate(raw)
            except ValidationError as e:
                logger.warning("Dropping malformed upstream row %r: %s", raw, e)
                continue
            snapshots.append(
                PriceSnapshot(
                    external_id=item.id,
                    name=item.name,
                    unit=item.satuan,
                    icon=item.background,
                    price_today=_to_decimal(item.today),
                    price_yesterday=_to_decimal(item.yesterday),
                )
            )

        logger.info("Received %d price items from upstream (level=%s)", len(snapshots), level_id)
        return snapshots

    async def fetch_provinces(self, search: str = "") -> List[dict]:
        async def _call() -> List[Any]:
            return await self._get_envelope("/provinces", {"search": search})

        return await self._with_retry(_call, 2, 1.0)

    async def fetch_cities(self, province_id: int) -> List[dict]:
        async def _call() -> List[Any]:
            return await self._get_envelope("/cities", {"province_id": province_id})

        return await self._with_retry(_call, 2, 1.0)
