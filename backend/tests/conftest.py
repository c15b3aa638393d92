"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (StaticPool keeps the single
connection alive) and one AsyncSession that the API routes and the webhook
endpoint share with the test body.
"""

import os

# Settings are read at import time; configure the environment first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-quillsign-tests"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRO_MONTHLY_PRICE_ID"] = "price_test_monthly"
os.environ["STRIPE_PRO_YEARLY_PRICE_ID"] = "price_test_yearly"
os.environ["ENVIRONMENT"] = "test"

import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import quillsign.api.v1.webhooks as webhooks_api  # noqa: E402
from quillsign.auth.jwt import create_token_pair  # noqa: E402
from quillsign.auth.passwords import hash_password  # noqa: E402
from quillsign.billing.claims import sync_claims  # noqa: E402
from quillsign.database import Base, get_db  # noqa: E402
from quillsign.main import app  # noqa: E402
from quillsign.models.entitlement import Entitlement  # noqa: E402
from quillsign.models.user import User  # noqa: E402

UserFactory = Callable[..., Awaitable[User]]


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield the session every request in the test will use."""
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()


class _SharedSession:
    """Stands in for ``async_session_factory()`` so webhooks write to the test session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def __aenter__(self) -> AsyncSession:
        return self.session

    async def __aexit__(self, *exc_info) -> bool:
        return False


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(webhooks_api, "async_session_factory", lambda: _SharedSession(db_session))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession) -> UserFactory:
    """Factory that commits a user, optionally with an entitlement record."""

    async def _make(
        email: str | None = None,
        role: str = "member",
        stripe_customer_id: str | None = None,
        status: str | None = None,
        subscription_id: str | None = "sub_test_123",
        is_active: bool = True,
    ) -> User:
        unique = uuid.uuid4().hex[:8]
        user = User(
            email=email or f"user-{unique}@example.com",
            hashed_password=hash_password("testpass123"),
            name="Test User",
            role=role,
            is_active=is_active,
            stripe_customer_id=stripe_customer_id,
        )
        db_session.add(user)
        await db_session.flush()

        entitlement = None
        if status is not None:
            entitlement = Entitlement(
                user=user,
                status=status,
                subscription_id=subscription_id,
                customer_id=stripe_customer_id,
                current_period_end=1702600000,
            )
            db_session.add(entitlement)
            await db_session.flush()

        await sync_claims(db_session, user, entitlement)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


def headers_for(user: User) -> dict[str, str]:
    """Authorization headers carrying the user's current claims."""
    tokens = create_token_pair(str(user.id), user.custom_claims)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest_asyncio.fixture
async def test_user(make_user: UserFactory) -> User:
    """A member with no subscription yet."""
    return await make_user()


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    return headers_for(test_user)


@pytest_asyncio.fixture
async def admin_user(make_user: UserFactory) -> User:
    return await make_user(role="admin")


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return headers_for(admin_user)


@pytest.fixture
def user_headers() -> Callable[[User], dict[str, str]]:
    """Build Authorization headers for any user created in a test."""
    return headers_for
