"""Shared test fixtures for the webhook service tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL, and
an httpx.MockTransport in place of real webhook receivers.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from unittest.mock import patch

from app.core.config import settings
from app.core.database import Base, get_db
from app.main import app

# Import all models to ensure they're registered with Base.metadata
from app.models.webhook import Webhook, WebhookLog  # noqa: F401


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def session_factory():
    """Fresh database per test; routes get sessions from the same engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield factory

    app.dependency_overrides.pop(get_db, None)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    """Direct DB session for test setup/assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_token(role: str = "ADMIN") -> str:
    return jwt.encode({"sub": "user-1", "role": role}, settings.JWT_SECRET_KEY, algorithm="HS256")


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}


class FakeReceiver:
    """Stands in for every webhook endpoint; records what was sent.

    Unrouted URLs answer 200 "ok". A route is either (status, text), an
    exception class to raise, or an async callable taking the request.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict = {}

    def respond(self, url: str, status_code: int = 200, text: str = "ok"):
        self.routes[url] = (status_code, text)

    def fail(self, url: str, exc_class=httpx.ConnectError):
        self.routes[url] = exc_class

    def hang(self, url: str, handler):
        self.routes[url] = handler

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        rule = self.routes.get(str(request.url), (200, "ok"))
        if isinstance(rule, type) and issubclass(rule, Exception):
            raise rule("Connection refused", request=request)
        if callable(rule):
            return await rule(request)
        status_code, text = rule
        return httpx.Response(status_code, text=text)

    def client_factory(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), timeout=timeout)

    def sent_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture
def receiver():
    fake = FakeReceiver()
    with patch("app.services.webhook_dispatcher._http_client", fake.client_factory):
        yield fake
