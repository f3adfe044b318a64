from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardbinder.api.deps import get_registry
from cardbinder.config import settings
from cardbinder.db.change_feed import ChangeFeed
from cardbinder.db.database import (
    build_engine,
    build_session_factory,
    drop_db,
    get_session,
    init_db,
)
from cardbinder.db.gateway import SqlAlchemyGateway
from cardbinder.main import app
from cardbinder.models.card import Card
from cardbinder.models.db import CardDB, SetDB
from cardbinder.services.catalog import SqlCatalog
from cardbinder.session import SessionRegistry

CATALOG_SETS = [
    {"id": "OP01", "name": "Romance Dawn", "release_date": "2022-12-02"},
    {"id": "OP02", "name": "Paramount War", "release_date": "2023-03-10"},
]

CATALOG_CARDS = [
    # OP01: one of each kind the classifier tells apart
    {"card_image_id": "OP01-001", "card_set_id": "OP01-001", "set_code": "OP01",
     "set_name": "Romance Dawn", "card_name": "Roronoa Zoro", "rarity": "L",
     "market_price": 1.25, "card_image": "https://img.example/OP01-001.png"},
    {"card_image_id": "OP01-001_p1", "card_set_id": "OP01-001", "set_code": "OP01",
     "set_name": "Romance Dawn", "card_name": "Roronoa Zoro (Parallel)", "rarity": "L",
     "market_price": 40.0, "card_image": "https://img.example/OP01-001_p1.png"},
    {"card_image_id": "OP01-016", "card_set_id": "OP01-016", "set_code": "OP01",
     "set_name": "Romance Dawn", "card_name": "Nami", "rarity": "R",
     "market_price": 0.5, "card_image": "https://img.example/OP01-016.png"},
    {"card_image_id": "OP01-024", "card_set_id": "OP01-024", "set_code": "OP01",
     "set_name": "Romance Dawn", "card_name": "Monkey.D.Luffy", "rarity": "SR",
     "market_price": None, "card_image": "https://img.example/OP01-024.png"},
    {"card_image_id": "OP01-120_m1", "card_set_id": "OP01-120", "set_code": "OP01",
     "set_name": "Romance Dawn", "card_name": "Shanks", "rarity": "SEC",
     "market_price": 900.0, "card_image": "https://img.example/OP01-120_m1.png"},
    # OP02
    {"card_image_id": "OP02-004", "card_set_id": "OP02-004", "set_code": "OP02",
     "set_name": "Paramount War", "card_name": "Edward.Newgate", "rarity": "C",
     "market_price": 0.1, "card_image": "https://img.example/OP02-004.png"},
    {"card_image_id": "OP02-013", "card_set_id": "OP02-013", "set_code": "OP02",
     "set_name": "Paramount War", "card_name": "Portgas.D.Ace", "rarity": "UC",
     "market_price": 0.2, "card_image": "https://img.example/OP02-013.png"},
]


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await drop_db(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def gateway(session_factory, feed) -> SqlAlchemyGateway:
    """Real gateway on the in-memory database."""
    return SqlAlchemyGateway.for_factory(session_factory, feed)


@pytest.fixture
async def seeded_catalog(session_factory, gateway) -> SqlCatalog:
    """Catalog with two small sets loaded."""
    async with session_factory() as session:
        session.add_all([SetDB(**row) for row in CATALOG_SETS])
        session.add_all([CardDB(**row) for row in CATALOG_CARDS])
        await session.commit()
    return SqlCatalog(session_factory, lock=gateway.lock)


@pytest.fixture
def mock_gateway() -> MagicMock:
    """
    Gateway double. Async methods are AsyncMocks; no change events fire.

    Reads return no rows by default.
    """
    gateway = MagicMock(spec=SqlAlchemyGateway)
    gateway.fetch_rows.return_value = []
    gateway.update.return_value = 1
    gateway.delete.return_value = 1
    return gateway


@pytest.fixture
def zoro() -> Card:
    return Card(
        card_image_id="OP01-001",
        card_name="Roronoa Zoro",
        set_id="OP01",
        card_set_id="OP01-001",
        set_name="Romance Dawn",
        rarity="L",
        card_image="https://img.example/OP01-001.png",
        market_price=1.25,
    )


@pytest.fixture
def nami() -> Card:
    return Card(
        card_image_id="OP01-016",
        card_name="Nami",
        set_id="OP01",
        card_set_id="OP01-016",
        set_name="Romance Dawn",
        rarity="R",
        card_image="https://img.example/OP01-016.png",
        market_price=0.5,
    )


@pytest.fixture
async def registry(session_factory, seeded_catalog, monkeypatch) -> SessionRegistry:
    """Per-owner sessions over the seeded in-memory database."""
    # Refetches triggered by a session's own writes stay out of the way
    monkeypatch.setattr(settings, "binder_refresh_debounce_seconds", 60)
    registry = SessionRegistry(session_factory)
    yield registry
    await registry.close_all()


@pytest.fixture
async def client(session_factory, registry):
    """Provide an async test client wired to the test database and registry."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
