"""Tests for the upstream price API client"""
import json
from decimal import Decimal

import httpx
import pytest

from hargapangan.core.errors import UpstreamUnavailable
from hargapangan.services.price_api_client import PriceApiClient, is_plausible_price

PAYLOAD = {
    "status": "success",
    "message": "ok",
    "data": [
        {"id": 109, "name": "Beras SPHP", "satuan": "Rp./kg", "today": 12500, "yesterday": "12400", "background": "beras.png"},
        {"id": 27, "name": "Cabai Merah Keriting", "satuan": "Rp./kg", "today": None, "yesterday": 45000},
        {"name": "no id"},
    ],
}


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_client(handler, sleep=None, **kwargs) -> PriceApiClient:
    return PriceApiClient(
        base_url="https://upstream.test/api",
        transport=httpx.MockTransport(handler),
        sleep=sleep or FakeSleep(),
        **kwargs,
    )


class TestFetchPrices:
    async def test_parses_snapshots_and_drops_malformed_rows(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=PAYLOAD)

        client = make_client(handler)
        snapshots = await client.fetch_prices(level_id=1)

        assert seen["path"] == "/api/front/harga-pangan-informasi"
        assert seen["params"]["level_harga_id"] == "1"
        assert [s.external_id for s in snapshots] == [109, 27]
        assert snapshots[0].price_today == Decimal("12500")
        assert snapshots[0].price_yesterday == Decimal("12400")
        assert snapshots[0].icon == "beras.png"
        assert snapshots[1].price_today is None

    async def test_retries_with_exponential_backoff(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(502)
            return httpx.Response(200, json=PAYLOAD)

        sleep = FakeSleep()
        client = make_client(handler, sleep=sleep, max_attempts=3, backoff_seconds=2.0)
        snapshots = await client.fetch_prices()

        assert len(calls) == 3
        assert sleep.delays == [2.0, 4.0]
        assert len(snapshots) == 2

    async def test_raises_upstream_unavailable_after_budget(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        sleep = FakeSleep()
        client = make_client(handler, sleep=sleep, max_attempts=3, backoff_seconds=2.0)

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_prices()
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.parametrize("body", [
        {"status": "error", "message": "maintenance"},
        {"status": "success", "data": None},
        {"unexpected": True},
    ])
    async def test_malformed_envelope_is_upstream_failure(self, body):
        client = make_client(lambda request: httpx.Response(200, json=body), max_attempts=1)

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_prices()

    async def test_non_json_body_is_upstream_failure(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"), max_attempts=1)

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_prices()


class TestRegions:
    async def test_fetch_provinces_uses_two_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        sleep = FakeSleep()
        client = make_client(handler, sleep=sleep)
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_provinces()

        assert len(calls) == 2
        assert sleep.delays == [1.0]

    async def test_fetch_cities_passes_province(self):
        def handler(request):
            assert request.url.params["province_id"] == "31"
            return httpx.Response(200, content=json.dumps({"status": "success", "data": [{"id": 3171, "nama": "Jakarta Selatan"}]}))

        client = make_client(handler)
        cities = await client.fetch_cities(31)
        assert cities == [{"id": 3171, "nama": "Jakarta Selatan"}]


class TestPlausibility:
    @pytest.mark.parametrize("value,expected", [
        (Decimal("100"), True),
        (Decimal("1000000"), True),
        (Decimal("99"), False),
        (Decimal("1000001"), False),
        (Decimal("0"), False),
        (Decimal("-5"), False),
        (None, False),
    ])
    def test_band(self, value, expected):
        assert is_plausible_price(value) is expected
