"""End-to-end tests through the HTTP API"""
import io
from decimal import Decimal

import httpx
from PIL import Image
from sqlalchemy import select

from hargapangan.main import app
from hargapangan.models.audit import AuditLogEntry
from hargapangan.models.price_point import PricePoint
from hargapangan.services.price_api_client import PriceApiClient
from hargapangan.services.scheduler import SyncScheduler
from hargapangan.services.sync_service import PriceSyncService

from conftest import TODAY

UPSTREAM = {
    "status": "success",
    "data": [{"id": 109, "name": "Beras SPHP", "satuan": "Rp./kg", "today": 12500, "yesterday": 12400}],
}


async def no_sleep(seconds):
    return None


def mock_client(handler) -> PriceApiClient:
    return PriceApiClient(
        base_url="https://upstream.test/api",
        transport=httpx.MockTransport(handler),
        sleep=no_sleep,
        max_attempts=1,
    )


def jpeg() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 30), "orange").save(buffer, format="JPEG")
    return buffer.getvalue()


class TestHealthAndAuth:
    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_login_and_me(self, client, make_user, session_factory):
        await make_user("siti", role="editor", password="rahasia")

        response = await client.post("/api/v1/auth/login", json={"username": "siti", "password": "rahasia"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["username"] == "siti"

        async with session_factory() as session:
            actions = (await session.execute(select(AuditLogEntry.action))).scalars().all()
        assert "user_login" in actions

    async def test_bad_credentials(self, client, make_user):
        await make_user("siti", password="rahasia")
        response = await client.post("/api/v1/auth/login", json={"username": "siti", "password": "salah"})
        assert response.status_code == 401
        assert response.json()["error"] == "authentication_failed"

    async def test_missing_token(self, client):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401


class TestPriceEndpoints:
    async def test_current_prices(self, client, add_commodity, add_price):
        beras = await add_commodity()
        await add_price(beras, 12500)

        response = await client.get("/api/v1/prices/current", params={"date": TODAY.isoformat()})

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["prices"][0]["commodity"]["name"] == "Beras SPHP"
        assert body["prices"][0]["price"] == 12500.0

    async def test_history_unknown_commodity(self, client):
        response = await client.get("/api/v1/prices/history/999")
        assert response.status_code == 404
        assert response.json()["error"] == "commodity_not_found"

    async def test_statistics_rejects_unknown_period(self, client):
        response = await client.get("/api/v1/prices/statistics", params={"period": "1y"})
        assert response.status_code == 422

    async def test_export_csv_requires_role(self, client, add_commodity, add_price, make_user, editor, auth_headers):
        beras = await add_commodity()
        await add_price(beras, 12500)
        viewer = await make_user("viewer", role="viewer")

        forbidden = await client.get("/api/v1/prices/export", headers=await auth_headers(viewer))
        assert forbidden.status_code == 403
        assert forbidden.json()["error"] == "permission_denied"

        response = await client.get("/api/v1/prices/export", headers=await auth_headers(editor))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0] == "date,commodity,category,unit,price,source,is_override,level"
        assert "Beras SPHP" in lines[1]

    async def test_manual_sync(self, client, admin, auth_headers, session_factory):
        app.state.sync_scheduler = SyncScheduler(
            PriceSyncService(session_factory, client=mock_client(lambda r: httpx.Response(200, json=UPSTREAM)))
        )

        response = await client.post("/api/v1/prices/sync", json={"level_harga_id": 3}, headers=await auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["saved"] == 1

        status = await client.get("/api/v1/prices/sync/status", headers=await auth_headers(admin))
        assert status.json()["sync_count"] == 1
        assert status.json()["last_success"] is True

    async def test_manual_sync_admin_only(self, client, editor, auth_headers):
        response = await client.post("/api/v1/prices/sync", headers=await auth_headers(editor))
        assert response.status_code == 403


class TestOverrideEndpoints:
    async def test_request_approve_delete(self, client, add_commodity, add_price, editor, admin, auth_headers, session_factory):
        beras = await add_commodity()
        point = await add_price(beras, 12500)
        editor_headers = await auth_headers(editor)
        admin_headers = await auth_headers(admin)

        created = await client.post(
            "/api/v1/overrides",
            data={
                "commodity_id": str(beras.id),
                "date": TODAY.isoformat(),
                "override_price": "20000",
                "reason": "market survey",
            },
            files={"evidence": ("nota.jpg", jpeg(), "image/jpeg")},
            headers=editor_headers,
        )
        assert created.status_code == 201
        override = created.json()
        assert override["status"] == "pending"
        assert override["evidence_path"].endswith(".jpg")

        listed = await client.get("/api/v1/overrides", params={"status": "pending"}, headers=editor_headers)
        assert listed.json()["pagination"]["total"] == 1
        assert listed.json()["overrides"][0]["commodity_name"] == "Beras SPHP"

        self_approve = await client.patch(
            f"/api/v1/overrides/{override['id']}/status", json={"status": "approved"}, headers=editor_headers
        )
        assert self_approve.status_code == 403

        approved = await client.patch(
            f"/api/v1/overrides/{override['id']}/status", json={"status": "approved"}, headers=admin_headers
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        again = await client.patch(
            f"/api/v1/overrides/{override['id']}/status", json={"status": "rejected"}, headers=admin_headers
        )
        assert again.status_code == 409
        assert again.json()["error"] == "already_processed"

        async with session_factory() as session:
            stored = await session.get(PricePoint, point.id)
            assert stored.price == Decimal("20000")
            assert stored.is_override is True

        deleted = await client.delete(f"/api/v1/overrides/{override['id']}", headers=admin_headers)
        assert deleted.status_code == 204

        async with session_factory() as session:
            stored = await session.get(PricePoint, point.id)
            assert stored.price == Decimal("12500")
            assert stored.source == "api"

    async def test_no_current_price(self, client, add_commodity, editor, auth_headers):
        beras = await add_commodity()
        response = await client.post(
            "/api/v1/overrides",
            data={"commodity_id": str(beras.id), "date": TODAY.isoformat(), "override_price": "13000", "reason": "survey"},
            headers=await auth_headers(editor),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "no_current_price"

    async def test_rejected_request_stores_no_evidence(self, client, add_commodity, editor, auth_headers, data_dir):
        beras = await add_commodity()
        response = await client.post(
            "/api/v1/overrides",
            data={"commodity_id": str(beras.id), "date": TODAY.isoformat(), "override_price": "13000", "reason": "survey"},
            files={"evidence": ("nota.jpg", jpeg(), "image/jpeg")},
            headers=await auth_headers(editor),
        )
        assert response.status_code == 404
        assert [p for p in data_dir.rglob("*") if p.is_file()] == []


class TestCommodityEndpoints:
    async def test_create_list_soft_delete(self, client, admin, auth_headers):
        headers = await auth_headers(admin)

        created = await client.post("/api/v1/commodities", json={"name": "Bawang Merah"}, headers=headers)
        assert created.status_code == 201
        assert created.json()["category"] == "bumbu"
        commodity_id = created.json()["id"]

        listed = await client.get("/api/v1/commodities")
        assert [c["name"] for c in listed.json()["commodities"]] == ["Bawang Merah"]

        assert (await client.delete(f"/api/v1/commodities/{commodity_id}", headers=headers)).status_code == 204
        listed = await client.get("/api/v1/commodities")
        assert listed.json()["commodities"] == []
        assert (await client.get(f"/api/v1/commodities/{commodity_id}")).json()["is_active"] is False

    async def test_custom_commodities(self, client, editor, auth_headers):
        headers = await auth_headers(editor)
        body = {"name": "Jengkol", "unit": "kg", "category": "sayur lokal"}

        first = await client.post("/api/v1/commodities/custom", json=body, headers=headers)
        second = await client.post("/api/v1/commodities/custom", json=body, headers=headers)

        assert first.status_code == 201
        assert first.json()["id"] == second.json()["id"]
        assert len((await client.get("/api/v1/commodities/custom")).json()) == 1


class TestMarketPriceEndpoints:
    async def test_create_verify_and_compare(self, client, add_commodity, editor, admin, auth_headers):
        beras = await add_commodity()

        created = await client.post(
            "/api/v1/market-prices",
            data={
                "commodity_id": str(beras.id),
                "market_name": "Pasar Minggu",
                "price": "13000",
                "date_recorded": TODAY.isoformat(),
            },
            files={"image": ("harga.jpg", jpeg(), "image/jpeg")},
            headers=await auth_headers(editor),
        )
        assert created.status_code == 201
        report = created.json()
        assert report["commodity_name"] == "Beras SPHP"
        assert report["image_path"] is not None

        verified = await client.patch(
            f"/api/v1/market-prices/{report['id']}/verification",
            json={"verification_status": "verified"},
            headers=await auth_headers(admin),
        )
        assert verified.status_code == 200
        assert verified.json()["verification_status"] == "verified"

        compare = await client.get("/api/v1/market-prices/compare", params={"commodity_id": beras.id})
        assert compare.json()["markets"][0]["market_name"] == "Pasar Minggu"

    async def test_csv_import(self, client, add_commodity, editor, auth_headers):
        beras = await add_commodity()
        content = (
            "commodity_id,market_name,price,date_recorded\n"
            f"{beras.id},Pasar Minggu,13000,{TODAY.isoformat()}\n"
            f"{beras.id},Pasar Senen,,{TODAY.isoformat()}\n"
        )
        response = await client.post(
            "/api/v1/market-prices/import",
            files={"file": ("harga.csv", content.encode(), "text/csv")},
            headers=await auth_headers(editor),
        )
        assert response.status_code == 200
        assert response.json()["imported"] == 1
        assert response.json()["failed"] == 1

        listed = await client.get("/api/v1/market-prices", params={"source": "import"})
        assert listed.json()["pagination"]["total"] == 1

    async def test_missing_report(self, client):
        response = await client.get("/api/v1/market-prices/999")
        assert response.status_code == 404
        assert response.json()["error"] == "market_price_not_found"


class TestUpstreamEndpoints:
    async def test_cached_then_stale_fallback(self, client, admin, auth_headers):
        app.state.price_client = mock_client(lambda r: httpx.Response(200, json=UPSTREAM))

        first = await client.get("/api/v1/upstream/prices")
        second = await client.get("/api/v1/upstream/prices")
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert second.json()["data"][0]["price_today"] == 12500.0

        # Expire everything and take the upstream down
        app.state.snapshot_cache.ttl_seconds = 0
        app.state.price_client = mock_client(lambda r: httpx.Response(503))

        stale = await client.get("/api/v1/upstream/prices")
        assert stale.status_code == 200
        assert stale.json()["stale"] is True

        headers = await auth_headers(admin)
        status = await client.get("/api/v1/upstream/cache", headers=headers)
        assert len(status.json()["entries"]) == 1
        cleared = await client.delete("/api/v1/upstream/cache", headers=headers)
        assert cleared.json()["cleared"] == 1

        down = await client.get("/api/v1/upstream/prices")
        assert down.status_code == 503
        assert down.json()["error"] == "upstream_unavailable"

    async def test_provinces_loaded_once(self, client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status": "success", "data": [{"id": 31, "nama": "DKI Jakarta"}]})

        app.state.price_client = mock_client(handler)

        first = await client.get("/api/v1/regions/provinces")
        second = await client.get("/api/v1/regions/provinces")

        assert first.json()[0]["province_name"] == "DKI Jakarta"
        assert second.json() == first.json()
        assert len(calls) == 1


class TestAuditLogEndpoint:
    async def test_admin_only(self, client, admin, editor, auth_headers):
        assert (await client.get("/api/v1/audit-logs", headers=await auth_headers(editor))).status_code == 403

        await client.post("/api/v1/commodities", json={"name": "Gula Pasir"}, headers=await auth_headers(admin))
        response = await client.get("/api/v1/audit-logs", params={"action": "commodity_created"}, headers=await auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
