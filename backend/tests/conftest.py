"""Shared test configuration and fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool, so
all sessions share one connection) and a ``FakeBillingClient`` in place of
Stripe. Settings are read at import time, so the environment is prepared
before anything from ``subledger`` is imported.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_AUTO_CREATE"] = "false"
os.environ["SUPABASE_JWT_SECRET"] = "test-supabase-jwt-secret-with-enough-length"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_STARTER_PRICE_ID"] = "price_test_starter"
os.environ["STRIPE_STARTER_YEARLY_PRICE_ID"] = "price_test_starter_yearly"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_test_pro"
os.environ["STRIPE_PRO_YEARLY_PRICE_ID"] = "price_test_pro_yearly"
os.environ["STRIPE_ENTERPRISE_PRICE_ID"] = "price_test_enterprise"
os.environ["STRIPE_ENTERPRISE_YEARLY_PRICE_ID"] = ""

import uuid  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from stripe_fakes import FakeBillingClient, auth_headers_for  # noqa: E402

from subledger.billing.stripe_client import get_billing_client  # noqa: E402
from subledger.database import Base, get_db  # noqa: E402
from subledger.main import app  # noqa: E402
from subledger.models.user import Profile  # noqa: E402
from subledger.services.subscription_service import get_or_create_profile  # noqa: E402

# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """A fresh in-memory database with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on the per-test database; commits are real but short-lived."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_stripe() -> FakeBillingClient:
    return FakeBillingClient()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, fake_stripe: FakeBillingClient) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and fake Stripe."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_client] = lambda: fake_stripe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: authenticated profile
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_profile(db_session: AsyncSession) -> Profile:
    """A profile with its default free subscription, as created on first login."""
    unique = uuid.uuid4().hex[:8]
    profile = await get_or_create_profile(db_session, uuid.uuid4(), f"user-{unique}@example.com")
    await db_session.commit()
    return profile


@pytest_asyncio.fixture
async def auth_headers(test_profile: Profile) -> dict[str, str]:
    """Return Authorization headers for the test profile."""
    return auth_headers_for(test_profile.id, test_profile.email)
