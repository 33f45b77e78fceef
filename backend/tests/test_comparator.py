"""Tests for price comparison, history and statistics"""
from datetime import timedelta

import pytest

from hargapangan.core.errors import CommodityNotFound, ValidationFailed
from hargapangan.services.comparator import Comparator, classify_trend, percent_change, select_active
from hargapangan.models.price_point import PricePoint
from hargapangan.models.region import Region

from conftest import TODAY


def day(n: int):
    return TODAY - timedelta(days=n)


class TestHelpers:
    def test_classify_trend(self):
        assert classify_trend(5) == "up"
        assert classify_trend(-1) == "down"
        assert classify_trend(0) == "stable"
        assert classify_trend(None) == "stable"

    def test_percent_change(self):
        from decimal import Decimal
        assert percent_change(Decimal("10000"), Decimal("15000")) == 50.0
        assert percent_change(Decimal("0"), Decimal("15000")) is None

    def test_select_active_prefers_override_then_consumer_level(self):
        api_producer = PricePoint(source="api", level="produsen", is_override=False)
        api_consumer = PricePoint(source="api", level="konsumen", is_override=False)
        manual = PricePoint(source="manual", level="eceran", is_override=True)

        assert select_active([api_producer, api_consumer]) is api_consumer
        assert select_active([api_producer, manual, api_consumer]) is manual
        assert select_active([api_producer]) is api_producer
        assert select_active([]) is None


class TestTopMovers:
    async def test_ranked_by_absolute_change(self, db, add_commodity, add_price):
        x = await add_commodity(name="Cabai Merah", external_id=1, category="bumbu")
        y = await add_commodity(name="Daging Sapi", external_id=2, category="daging")
        await add_price(x, 10000, on_date=day(6))
        await add_price(x, 15000, on_date=day(0))
        await add_price(y, 20000, on_date=day(6))
        await add_price(y, 19000, on_date=day(0))

        movers = await Comparator(db).top_movers(day(7), day(0))

        assert [m.commodity_id for m in movers] == [x.id, y.id]
        assert movers[0].change_percentage == 50.0
        assert movers[0].trend == "up"
        assert movers[1].change_percentage == -5.0
        assert movers[1].trend == "down"

    async def test_needs_two_days(self, db, add_commodity, add_price):
        x = await add_commodity()
        await add_price(x, 10000, on_date=day(0))

        assert await Comparator(db).top_movers(day(7), day(0)) == []

    async def test_limit(self, db, add_commodity, add_price):
        for i in range(3):
            c = await add_commodity(name=f"Komoditas {i}", external_id=100 + i)
            await add_price(c, 10000, on_date=day(1))
            await add_price(c, 10000 + (i + 1) * 1000, on_date=day(0))

        movers = await Comparator(db).top_movers(day(7), day(0), n=2)
        assert len(movers) == 2

    async def test_regional_rows_stay_out_of_national_figures(self, db, add_commodity, add_price):
        jakarta = Region(province_id=31, province_name="DKI Jakarta", level="province")
        db.add(jakarta)
        await db.commit()
        await db.refresh(jakarta)
        beras = await add_commodity()
        await add_price(beras, 20000, on_date=day(1), region_id=jakarta.id)
        await add_price(beras, 10000, on_date=day(1))
        await add_price(beras, 10000, on_date=day(0))
        comparator = Comparator(db)

        national = await comparator.top_movers(day(1), day(0))
        assert [(m.start_price, m.end_price, m.change_percentage) for m in national] == [(10000.0, 10000.0, 0.0)]
        assert await comparator.top_movers(day(1), day(0), region_id=jakarta.id) == []

        history = await comparator.day_over_day(beras.id, day(1), day(0))
        assert [item["price"] for item in history["history"]] == [10000.0, 10000.0]
        assert [row["api_price"] for row in await comparator.compare_day(day(1))] == [10000.0]
        assert movers[0].change_percentage == 30.0


class TestCompareDay:
    async def test_api_vs_manual(self, db, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12500)
        await add_price(beras, 13000, source="manual", is_override=True, level="eceran")

        [row] = await Comparator(db).compare_day(TODAY)

        assert row["api_price"] == 12500.0
        assert row["manual_price"] == 13000.0
        assert row["active_price"] == 13000.0
        assert row["is_override"] is True
        assert row["delta"] == 500.0
        assert row["delta_percentage"] == 4.0

    async def test_api_only(self, db, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12500)

        [row] = await Comparator(db).compare_day(TODAY)
        assert row["manual_price"] is None
        assert row["delta"] is None
        assert row["active_price"] == 12500.0


class TestDayOverDay:
    async def test_series_and_statistics(self, db, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12000, on_date=day(2))
        await add_price(beras, 12600, on_date=day(1))
        await add_price(beras, 12600, on_date=day(0))

        result = await Comparator(db).day_over_day(beras.id, day(2), day(0))

        history = result["history"]
        assert [h["trend"] for h in history] == ["stable", "up", "stable"]
        assert history[1]["delta"] == 600.0
        assert history[1]["delta_percentage"] == 5.0
        assert result["statistics"]["min"] == 12000.0
        assert result["statistics"]["max"] == 12600.0
        assert result["statistics"]["current"] == 12600.0
        assert result["statistics"]["change_percentage"] == 5.0

    async def test_uses_override_when_present(self, db, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12000, on_date=day(0))
        await add_price(beras, 15000, on_date=day(0), source="manual", is_override=True, level="eceran")

        result = await Comparator(db).day_over_day(beras.id, day(0), day(0))
        assert result["history"][0]["price"] == 15000.0
        assert result["history"][0]["is_override"] is True

    async def test_empty_window(self, db, add_commodity):
        beras = await add_commodity()
        result = await Comparator(db).day_over_day(beras.id, day(3), day(0))
        assert result["history"] == []
        assert result["statistics"]["current"] == 0.0

    async def test_errors(self, db, add_commodity):
        beras = await add_commodity()
        with pytest.raises(ValidationFailed):
            await Comparator(db).day_over_day(beras.id, day(0), day(3))
        with pytest.raises(CommodityNotFound):
            await Comparator(db).day_over_day(999, day(3), day(0))


class TestCurrentPrices:
    async def test_gap_against_yesterday(self, db, add_commodity, add_price):
        beras = await add_commodity()
        gula = await add_commodity(name="Gula Pasir", external_id=12, category="lainnya")
        await add_price(beras, 12000, on_date=day(1))
        await add_price(beras, 12500, on_date=day(0))
        await add_price(gula, 17000, on_date=day(0))

        items, total = await Comparator(db).current_prices(TODAY)

        by_name = {i["commodity"]["name"]: i for i in items}
        assert total == 2
        assert by_name["Beras SPHP"]["gap"] == 500.0
        assert by_name["Beras SPHP"]["gap_change"] == "up"
        assert by_name["Gula Pasir"]["yesterday_price"] is None
        assert by_name["Gula Pasir"]["gap_change"] == "stable"

    async def test_filters(self, db, add_commodity, add_price):
        beras = await add_commodity()
        gula = await add_commodity(name="Gula Pasir", external_id=12, category="lainnya")
        await add_price(beras, 12500)
        await add_price(gula, 17000)

        items, total = await Comparator(db).current_prices(TODAY, category="lainnya")
        assert total == 1
        assert items[0]["commodity"]["name"] == "Gula Pasir"

        items, total = await Comparator(db).current_prices(TODAY, search="beras")
        assert total == 1


class TestPeriodStatistics:
    async def test_aggregates(self, db, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12000, on_date=day(3))
        await add_price(beras, 13000, on_date=day(0))

        stats = await Comparator(db).period_statistics("7d", TODAY)

        assert stats["period"] == "7d"
        assert stats["date_range"]["start"] == day(7)
        [row] = stats["statistics"]
        assert row["avg_price"] == 12500.0
        assert row["data_points"] == 2
        assert stats["top_movers"][0]["commodity_id"] == beras.id

    async def test_unknown_period_falls_back_to_week(self, db):
        stats = await Comparator(db).period_statistics("1y", TODAY)
        assert stats["period"] == "7d"
