"""Tests for commodity registration and classification"""
import pytest
from sqlalchemy import func, select

from hargapangan.core.errors import CommodityNotFound
from hargapangan.models.commodity import Commodity
from hargapangan.services.commodity_registry import (
    CommodityRegistry,
    CustomCommodityRef,
    NationalCommodityRef,
    classify_category,
    make_ref,
)

from conftest import snapshot


class TestClassifyCategory:
    @pytest.mark.parametrize("name,category", [
        ("Beras Premium", "beras"),
        ("GKP Tingkat Petani", "beras"),
        ("Cabai Rawit Merah", "bumbu"),
        ("Bawang Putih Bonggol", "bumbu"),
        ("Daging Sapi Murni", "daging"),
        ("Telur Ayam Ras", "daging"),
        ("Ikan Kembung", "daging"),
        ("Jagung Pipilan Kering", "sayuran"),
        ("Kedelai Biji Kering (Impor)", "sayuran"),
        ("Gula Konsumsi", "lainnya"),
        ("Minyak Goreng Kemasan", "lainnya"),
        ("Tepung Terigu", "lainnya"),
        ("Something Else", "lainnya"),
        ("", "lainnya"),
        (None, "lainnya"),
    ])
    def test_keyword_table(self, name, category):
        assert classify_category(name) == category

    def test_first_rule_wins(self):
        # "bawang" (bumbu) is checked before "ayam" (daging)
        assert classify_category("Bawang Goreng Ayam") == "bumbu"


class TestResolve:
    async def test_creates_once_per_external_id(self, db):
        registry = CommodityRegistry(db)
        first = await registry.resolve(snapshot(external_id=109, name="Beras SPHP"))
        await db.commit()
        second = await registry.resolve(snapshot(external_id=109, name="Beras SPHP"))
        await db.commit()

        assert first.id == second.id
        assert first.category == "beras"
        count = (await db.execute(select(func.count(Commodity.id)))).scalar()
        assert count == 1

    async def test_updates_name_and_unit_but_keeps_category(self, db):
        registry = CommodityRegistry(db)
        commodity = await registry.resolve(snapshot(external_id=5, name="Beras Medium"))
        await db.commit()

        updated = await registry.resolve(snapshot(external_id=5, name="Gula Pasir", unit="Rp/kg"))
        await db.commit()

        assert updated.id == commodity.id
        assert updated.name == "Gula Pasir"
        assert updated.category == "beras"

    async def test_missing_name_gets_placeholder(self, db):
        commodity = await CommodityRegistry(db).resolve(snapshot(external_id=77, name=None))
        assert commodity.name == "Komoditas 77"


class TestReferences:
    def test_make_ref(self):
        assert make_ref("custom", 3) == CustomCommodityRef(3)
        assert make_ref("national", 3) == NationalCommodityRef(3)
        assert make_ref("national", 3).source == "national"

    async def test_resolve_reference_uses_own_table(self, db, add_commodity):
        commodity = await add_commodity()
        registry = CommodityRegistry(db)
        custom = await registry.find_or_create_custom("Jengkol", "kg", "sayur lokal")
        await db.commit()

        assert (await registry.resolve_reference(NationalCommodityRef(commodity.id))).name == "Beras SPHP"
        assert (await registry.resolve_reference(CustomCommodityRef(custom.id))).name == "Jengkol"

        with pytest.raises(CommodityNotFound):
            await registry.resolve_reference(CustomCommodityRef(999))

    async def test_find_or_create_custom_is_idempotent(self, db):
        registry = CommodityRegistry(db)
        a = await registry.find_or_create_custom("Petai", "papan", "sayur lokal")
        b = await registry.find_or_create_custom("Petai", "papan", "sayur lokal")
        c = await registry.find_or_create_custom("Petai", "kg", "sayur lokal")

        assert a.id == b.id
        assert c.id != a.id
