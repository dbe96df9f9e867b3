"""
Pytest fixtures for test database, client, payment gateway and tokens.

Each test gets its own SQLite file database so concurrent sessions behave
like separate connections, and the tables start empty.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_ENABLED"] = "false"
os.environ["EXPIRY_WORKER_ENABLED"] = "false"
os.environ["PAYMENT_PROVIDER"] = "offline"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from showbook.main import app
from showbook.db.base import Base
from showbook.db.session import get_db
from showbook.core.security import create_access_token
from showbook.models.show import Show
from showbook.services.interfaces.offline_payment import OfflinePaymentGateway
from showbook.services.strategy_factory import get_payment_gateway

USER_ID = "user_alice"
OTHER_USER_ID = "user_bob"
ADMIN_ID = "admin_carol"


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh database file per test, tables created up front."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'showbook_test.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> OfflinePaymentGateway:
    return OfflinePaymentGateway(frontend_url="http://frontend.test")


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with per-request sessions on the test database and the offline gateway."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _headers(sub: str, **claims) -> dict:
    token = create_access_token(data={"sub": sub, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> dict:
    return _headers(USER_ID)


@pytest.fixture
def other_auth_headers() -> dict:
    return _headers(OTHER_USER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return _headers(ADMIN_ID, role="admin")


async def _make_show(session_factory: async_sessionmaker, **overrides) -> Show:
    values = dict(
        movie_id="550",
        starts_at=datetime.now(timezone.utc) + timedelta(days=2),
        price=Decimal("10.00"),
        tier_prices=None,
        occupied_seats={},
        version=1,
    )
    values.update(overrides)
    show = Show(**values)
    # Own session: a rollback in the session under test must not expire it
    async with session_factory() as session:
        session.add(show)
        await session.commit()
        await session.refresh(show)
    return show


@pytest_asyncio.fixture
async def test_show(session_factory) -> Show:
    """A show at 10.00 per seat with every seat free."""
    return await _make_show(session_factory)


@pytest_asyncio.fixture
async def tiered_show(session_factory) -> Show:
    """Row A costs 15.00, every other row the 10.00 base price."""
    return await _make_show(session_factory, tier_prices={"A": "15.00"})


@pytest_asyncio.fixture
async def make_show(session_factory):
    async def factory(**overrides) -> Show:
        return await _make_show(session_factory, **overrides)

    return factory
