"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool, NullPool

from dinetrack.app.main import app
from dinetrack.app.core.config import settings
from dinetrack.app.core.dependencies import get_payment_gateway, get_notifier
from dinetrack.app.db.session import get_session_factory, Base
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine
from dinetrack.app.models.enums import Role
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.menu_item import MenuItem
from dinetrack.app.services.notification_service import RealtimeNotifier

from factories import MockRedis, FakeGateway, WEBHOOK_SECRET, create_user

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test, wired into the app."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    app.dependency_overrides[get_session_factory] = lambda: factory

    yield factory

    app.dependency_overrides.pop(get_session_factory, None)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path):
    """File-backed database with one connection per session, for concurrent writers."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dinetrack.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def notifier(mock_redis):
    return RealtimeNotifier(mock_redis)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def apply_overrides(fake_gateway, notifier, monkeypatch):
    """Replace lifespan-owned collaborators and pin the webhook secret."""
    monkeypatch.setattr(settings, "paychangu_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "webhook_allow_unsigned", False)

    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.pop(get_payment_gateway, None)
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
async def client(session_factory):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def ledger(session_factory):
    return LedgerEngine(session_factory, max_retries=3, retry_backoff=0)


@pytest.fixture
async def customer(session_factory):
    return await create_user(session_factory, email="diner@example.com", display_name="Diner One")


@pytest.fixture
async def other_customer(session_factory):
    return await create_user(session_factory, email="other@example.com", display_name="Diner Two")


@pytest.fixture
async def supervisor(session_factory):
    return await create_user(session_factory, email="boss@example.com", role=Role.SUPERVISOR)


@pytest.fixture
async def establishment(session_factory):
    async with session_factory() as session:
        venue = Establishment(name="Lakeside Grill", type="restaurant", supervisor_approved=True)
        session.add(venue)
        await session.commit()
        await session.refresh(venue)
    return venue


@pytest.fixture
async def other_establishment(session_factory):
    async with session_factory() as session:
        venue = Establishment(name="Corner Cafe", type="cafe", supervisor_approved=True)
        session.add(venue)
        await session.commit()
        await session.refresh(venue)
    return venue


@pytest.fixture
async def menu(session_factory, establishment, other_establishment):
    """Two dishes, one unavailable dish and one dish from another venue."""
    async with session_factory() as session:
        items = {
            "burger": MenuItem(establishment_id=establishment.id, name="Burger", price=10.0),
            "fries": MenuItem(establishment_id=establishment.id, name="Fries", price=5.0),
            "soup": MenuItem(establishment_id=establishment.id, name="Soup", price=4.0, is_available=False),
            "latte": MenuItem(establishment_id=other_establishment.id, name="Latte", price=3.0),
        }
        session.add_all(items.values())
        await session.commit()
        for item in items.values():
            await session.refresh(item)
    return items
