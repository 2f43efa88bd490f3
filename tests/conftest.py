from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mockoauth import utils
from mockoauth.app import create_app
from mockoauth.db.sessions import Base, get_async_session
from mockoauth.deps import get_now

SQLALCHEMY_TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def default_modes(monkeypatch):
    monkeypatch.setattr(utils, "STATELESS_TOKENS", False)
    monkeypatch.setattr(utils, "TOKEN_STRICTNESS", "strict")
    monkeypatch.setattr(utils, "ANONYMOUS_PASSTHROUGH", False)


@pytest_asyncio.fixture()
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    async_engine = create_async_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(
            async_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
        )
    finally:
        await async_engine.dispose()


@pytest_asyncio.fixture()
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, Any]:
    db = session_factory()
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def async_client(session_factory, clock) -> AsyncGenerator[AsyncClient, Any]:
    # Dependency override
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_async_session] = override_get_db
    app.dependency_overrides[get_now] = clock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def request_token(async_client):
    async def _request_token(client_id: str = "acme", client_secret: str = "s3cret", **extra):
        return await async_client.post(
            "/oauth/token", data={"client_id": client_id, "client_secret": client_secret, **extra}
        )

    return _request_token
