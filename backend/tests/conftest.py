"""Pytest configuration and fixtures for state permissions tests.

Every test gets its own in-memory SQLite database (aiosqlite), shared by
all sessions of that test through a StaticPool so the request session
and the editor's short-lived sessions see the same data.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal.config import settings

# Redis is not available in the test environment
settings.cache_enabled = False

from portal.auth.jwt import create_access_token, create_guest_token  # noqa: E402
from portal.database import Base, get_db  # noqa: E402
from portal.main import app  # noqa: E402
from portal.models import (  # noqa: E402
    AppRole,
    Brand,
    Product,
    State,
    StateAllowedProduct,
    UserRole,
)
from portal.services.editor_sessions import EditorRegistry, get_editor_registry  # noqa: E402

ADMIN_USER_ID = "11111111-1111-1111-1111-111111111111"
BASIC_USER_ID = "22222222-2222-2222-2222-222222222222"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database per test."""
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
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def catalog(session_factory) -> dict:
    """Seed states, brands, products and two users with roles.

    Products (id: name / brand):
      1: Berry Gummies / Yonder
      2: Apple Drops   / Xeno
      3: Apple Drops   / Yonder
      4: Citrus Chews  / (no brand)
    """
    async with session_factory() as session:
        session.add_all([
            State(id=1, name="California"),
            State(id=2, name="Nevada"),
            State(id=3, name="Texas"),
            Brand(id=1, name="Xeno"),
            Brand(id=2, name="Yonder", logo_url="https://cdn.example.com/yonder.png"),
        ])
        await session.flush()
        session.add_all([
            Product(id=1, name="Berry Gummies", brand_id=2),
            Product(id=2, name="Apple Drops", brand_id=1),
            Product(id=3, name="Apple Drops", brand_id=2),
            Product(id=4, name="Citrus Chews"),
            StateAllowedProduct(state_id=1, product_id=1),
            StateAllowedProduct(state_id=1, product_id=2),
            UserRole(user_id=ADMIN_USER_ID, role=AppRole.ADMIN),
            UserRole(user_id=BASIC_USER_ID, role=AppRole.BASIC),
        ])
        await session.commit()
    return {"states": [1, 2, 3], "products": [1, 2, 3, 4]}


# ── HTTP Client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def editor_registry(session_factory) -> AsyncGenerator[EditorRegistry, None]:
    registry = EditorRegistry(session_factory=session_factory)
    yield registry
    await registry.shutdown()


@pytest_asyncio.fixture
async def client(session_factory, editor_registry) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and editor registry overridden."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_editor_registry] = lambda: editor_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Auth Fixtures ────────────────────────────────────────────────

@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(ADMIN_USER_ID)}"}


@pytest.fixture
def basic_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(BASIC_USER_ID)}"}


@pytest.fixture
def guest_headers() -> dict:
    token, _ = create_guest_token()
    return {"Authorization": f"Bearer {token}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Pure logic tests, no database")
    config.addinivalue_line("markers", "api: HTTP tests through the ASGI app")
    config.addinivalue_line("markers", "integration: Tests against a real SQL engine")
