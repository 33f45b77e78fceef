"""Shared fixtures: in-memory database, users and an ASGI client"""
from datetime import date
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import hargapangan.models  # noqa: F401
from hargapangan.core.config import settings
from hargapangan.core.database import Base, get_db
from hargapangan.core.rate_limit import limiter
from hargapangan.core.security import hash_password, issue_token
from hargapangan.models.commodity import Commodity
from hargapangan.models.price_point import PricePoint
from hargapangan.models.user import User
from hargapangan.services.price_api_client import PriceSnapshot
from hargapangan.services.snapshot_cache import SnapshotCache

TODAY = date(2026, 10, 16)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def make_user(db):
    async def _make_user(username: str, role: str = "editor", password: str = "secret123") -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            full_name=username.title(),
            role=role,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def admin(make_user):
    return await make_user("admin", role="admin")


@pytest.fixture
async def editor(make_user):
    return await make_user("editor", role="editor")


@pytest.fixture
def auth_headers(db):
    async def _headers(user: User) -> dict:
        token = issue_token(user)
        await db.commit()
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def add_commodity(db):
    async def _add(name: str = "Beras SPHP", external_id: int = 109, category: str = "beras") -> Commodity:
        commodity = Commodity(external_id=external_id, name=name, unit="Rp/kg", category=category, is_active=True)
        db.add(commodity)
        await db.commit()
        await db.refresh(commodity)
        return commodity

    return _add


@pytest.fixture
def add_price(db):
    async def _add(
        commodity: Commodity,
        price,
        on_date: date = TODAY,
        source: str = "api",
        is_override: bool = False,
        level: str = "konsumen",
        region_id=None,
    ) -> PricePoint:
        point = PricePoint(
            commodity_id=commodity.id,
            region_id=region_id,
            price=Decimal(str(price)),
            date=on_date,
            source=source,
            is_override=is_override,
            level=level,
        )
        db.add(point)
        await db.commit()
        await db.refresh(point)
        return point

    return _add


def snapshot(external_id=109, name="Beras SPHP", today=12500, yesterday=None, unit="Rp/kg") -> PriceSnapshot:
    return PriceSnapshot(
        external_id=external_id,
        name=name,
        unit=unit,
        icon=None,
        price_today=Decimal(str(today)) if today is not None else None,
        price_yesterday=Decimal(str(yesterday)) if yesterday is not None else None,
    )


@pytest.fixture
async def client(session_factory):
    from hargapangan.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.state.snapshot_cache = SnapshotCache(ttl_seconds=settings.UPSTREAM_CACHE_TTL_SECONDS)
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    for attr in ("snapshot_cache", "price_client", "sync_scheduler"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
    limiter.enabled = True
