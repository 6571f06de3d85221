"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import os

# Must be set before config.settings is imported anywhere
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["API_BASE_URL"] = "http://shop.test"
os.environ["CHECKOUT_URL"] = "/checkout"
os.environ["ORDER_WEBHOOK_SECRET"] = ""
os.environ["PLAN_TIER"] = "free"
os.environ["LINK_PATH_PREFIX"] = "jump-to-checkout"
os.environ["COOKIE_SECURE"] = "false"
os.environ["EXPIRY_GRACE_MINUTES"] = "0"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from checkout_links.db.tables import Base
from checkout_links.db.engine import get_session

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"
TEST_SECRET = "test-link-secret-0123456789abcdefghijklmnop"
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


from checkout_links.services.entitlements import (  # noqa: E402
    PlanEntitlementPolicy, free_tier, get_entitlement_policy, pro_tier,
)
from checkout_links.services.secret_key import get_secret_key  # noqa: E402
from checkout_links.services.storefront import (  # noqa: E402
    CatalogItem, InMemoryStorefront, get_storefront,
)
from checkout_links.services.visitor_session import SessionStore, get_session_store  # noqa: E402

# Per-test collaborators, swapped in by the autouse fixture below
_state: dict = {}

# Import app and override BEFORE any test module imports app
from checkout_links.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session
app.dependency_overrides[get_secret_key] = lambda: TEST_SECRET
app.dependency_overrides[get_storefront] = lambda: _state["storefront"]
app.dependency_overrides[get_session_store] = lambda: _state["sessions"]
app.dependency_overrides[get_entitlement_policy] = lambda: _state["policy"]


def default_catalog() -> list[CatalogItem]:
    return [
        CatalogItem(42, "Summer Tee", in_stock=True, manages_stock=True, stock_quantity=10),
        CatalogItem(43, "Beach Towel", in_stock=True),
        CatalogItem(7, "Sun Hat", in_stock=False),
        CatalogItem(8, "Travel Mug", in_stock=True, manages_stock=True, stock_quantity=1),
        CatalogItem(501, "Summer Tee - Blue / L", in_stock=True, manages_stock=True, stock_quantity=3),
    ]


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after. Fresh storefront + sessions."""
    _state["storefront"] = InMemoryStorefront(default_catalog())
    _state["sessions"] = SessionStore()
    _state["policy"] = PlanEntitlementPolicy(free_tier())

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session():
    """Session for driving services directly."""
    async with TestSession() as session:
        yield session


@pytest_asyncio.fixture
async def other_db_session():
    """Independent session, standing in for a second worker."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def storefront() -> InMemoryStorefront:
    return _state["storefront"]


@pytest.fixture
def sessions() -> SessionStore:
    return _state["sessions"]


@pytest.fixture
def pro_plan():
    """Switch the app to the elevated tier for this test."""
    _state["policy"] = PlanEntitlementPolicy(pro_tier())
    return _state["policy"]


@pytest.fixture
def free_plan():
    return _state["policy"]


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def admin_headers() -> dict:
    return dict(ADMIN_HEADERS)
