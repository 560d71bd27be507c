"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from fakeredis import FakeAsyncRedis
from typing import AsyncGenerator

from models.base import Base
from core.config import Settings
from catalog_sync.providers.base import ProviderClient, CatalogPage

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small batches and no real credentials"""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        REDIS_URL="redis://localhost:6379/15",
        ENABLED_PROVIDERS=["esimgo", "maya", "airalo"],
        DEFAULT_PROVIDER="esimgo",
        UPSERT_BATCH_SIZE=2,
        FULL_SYNC_LOCK_TTL_SECONDS=60,
        QUEUE_NAME="catalog-sync-test",
        QUEUE_DEFAULT_ATTEMPTS=3,
        QUEUE_BACKOFF_SECONDS=1.0,
        QUEUE_BACKOFF_JITTER=0.5,
        WORKER_LEASE_SECONDS=30,
        MAX_STALLED_COUNT=1,
        QUEUE_KEEP_COMPLETED=100,
        QUEUE_KEEP_FAILED=100,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,  # One connection, so every session sees the same in-memory database
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def redis_client():
    """In-process Redis with Lua support (redis-py Lock release runs a script)"""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def esimgo_raw_bundles():
    """eSIM Go /catalogue bundles"""
    return [
        {
            "name": "esim_1GB_7D_FR_V2",
            "description": "eSIM, 1GB, 7 Days, France, V2",
            "groups": ["Standard Fixed"],
            "countries": [{"name": "France", "region": "Europe", "iso": "FR"}],
            "dataAmount": 1000,
            "duration": 7,
            "speed": ["4G", "5G"],
            "unlimited": False,
            "price": 4.5,
        },
        {
            "name": "esim_ULE_30D_EU_V2",
            "description": "eSIM, Unlimited Essential, 30 Days, Europe",
            "groups": ["Standard Unlimited Essential"],
            "countries": [
                {"name": "France", "region": "Europe", "iso": "FR"},
                {"name": "Germany", "region": "Europe", "iso": "DE"},
                {"name": "Turkey", "region": "Middle East", "iso": "TR"},
            ],
            "dataAmount": -1,
            "duration": 30,
            "speed": ["4G"],
            "unlimited": True,
            "price": 39.0,
        },
    ]


@pytest.fixture
def maya_raw_bundles():
    """Maya /account/products products"""
    return [
        {
            "uid": "b1",
            "name": "Unlimited Europe 30",
            "validity_days": 30,
            "wholesale_price_usd": "19.99",
            "data_quota_bytes": -1,
            "countries_enabled": ["FRA", "DEU"],
        },
        {
            "uid": "b2",
            "name": "Japan 3GB",
            "validity_days": 15,
            "wholesale_price_usd": "7.50",
            "data_quota_mb": 3072,
            "countries_enabled": ["JPN"],
        },
    ]


@pytest.fixture
def airalo_raw_packages():
    """Airalo packages as emitted by flatten_packages()"""
    return [
        {
            "id": "merhaba-7days-1gb",
            "title": "1 GB - 7 Days",
            "operator": "Merhaba",
            "amount": 1024,
            "day": 7,
            "price": 4.5,
            "is_unlimited": False,
            "countries": ["TR"],
            "short_info": "Turkey data only",
            "type": "sim",
        },
        {
            "id": "discover-unlimited-10days",
            "title": "Unlimited - 10 Days",
            "operator": "Discover Global",
            "amount": None,
            "day": 10,
            "price": 49.0,
            "is_unlimited": True,
            "countries": ["US", "CA", "MX"],
            "type": "sim",
        },
    ]


class StaticCatalogClient(ProviderClient):
    """Provider client serving fixed pages; records the filters it was called with"""

    def __init__(self, provider: str, pages, supports_groups: bool = True, error: Exception = None):
        super().__init__("https://provider.test")
        self.provider = provider
        self.supports_groups = supports_groups
        self.pages = pages
        self.error = error
        self.calls = []

    async def fetch_catalog_page(self, page, filters=None):
        self.calls.append((page, filters))
        if self.error is not None:
            raise self.error
        bundles = self.pages[page - 1] if page <= len(self.pages) else []
        return CatalogPage(bundles=bundles, page=page, has_more=page < len(self.pages))

    async def check_health(self):
        if self.error is not None:
            raise self.error
        return bool(self.pages and self.pages[0])


@pytest.fixture
def static_client():
    """Factory for StaticCatalogClient"""
    return StaticCatalogClient
