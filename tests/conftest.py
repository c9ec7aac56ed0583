"""Shared test configuration and fixtures.

Every test gets a fresh database:
- By default a throwaway SQLite file (aiosqlite) under pytest's tmp_path.
- Set TEST_DATABASE_URL to run against PostgreSQL instead; tables are
  dropped and recreated around each test.

The webhook route and the ``get_db`` dependency are both pointed at the test
engine, so requests and direct service calls see the same data.
"""

import hashlib
import hmac
import json
import os
import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import tasy_billing.models  # noqa: F401  (registers every table on Base.metadata)
from tasy_billing.config import settings
from tasy_billing.database import Base, get_db
from tasy_billing.main import app
from tasy_billing.models.profile import Profile

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-supabase-jwt-secret"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create an engine on an empty schema for a single test."""
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'tasy_test.db'}"
    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to the test engine, also used by the webhook route."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    with patch("tasy_billing.api.v1.webhooks.async_session_factory", factory):
        yield factory


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for direct service/handler calls."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Profiles and auth
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def make_profile(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[Profile]]:
    """Return a coroutine that creates and commits a profile."""

    async def _make(
        credits: int = 0,
        stripe_customer_id: str | None = None,
        email: str | None = None,
    ) -> Profile:
        unique = uuid.uuid4().hex[:8]
        profile = Profile(
            id=uuid.uuid4(),
            email=email or f"user-{unique}@test.com",
            stripe_customer_id=stripe_customer_id,
            credits=credits,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def jwt_secret(monkeypatch) -> str:
    """Configure the Supabase JWT secret used to verify test tokens."""
    monkeypatch.setattr(settings, "supabase_jwt_secret", JWT_SECRET)
    return JWT_SECRET


@pytest.fixture
def auth_headers_for(jwt_secret: str) -> Callable[[Profile], dict[str, str]]:
    """Return a function building Authorization headers for a profile."""

    def _headers(profile: Profile) -> dict[str, str]:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": str(profile.id),
                "email": profile.email,
                "aud": "authenticated",
                "role": "authenticated",
                "iat": now,
                "exp": now + timedelta(hours=1),
            },
            jwt_secret,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ---------------------------------------------------------------------------
# Signed webhook delivery
# ---------------------------------------------------------------------------


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a ``stripe-signature`` header the same way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def webhook_secret(monkeypatch) -> str:
    """Configure the product-specific webhook signing secret."""
    monkeypatch.setattr(settings, "stripe_webhook_secret_viral", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_webhook_secret", "")
    return WEBHOOK_SECRET


@pytest.fixture
def post_event(client: AsyncClient, webhook_secret: str):
    """Return a coroutine that POSTs a correctly signed event to the webhook."""

    async def _post(event: dict):
        payload = json.dumps(event).encode("utf-8")
        return await client.post(
            "/api/v1/webhooks/stripe",
            content=payload,
            headers={
                "stripe-signature": sign_payload(payload, webhook_secret),
                "content-type": "application/json",
            },
        )

    return _post
