"""
Pytest configuration and fixtures for the backend tests.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

# Set test environment variables before importing app modules
os.environ.setdefault("DB_SOURCE", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("TOKEN_GC_INTERVAL_SECONDS", "0")

import pytest
import pytest_asyncio
from faker import Faker
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import Settings
from core.security import AccessTokenCodec, PasswordHasher
from db.base import initialize_database
from db.session import build_engine, build_session_factory
from db.stores.blacklist_store import BlacklistStore
from db.stores.refresh_token_store import RefreshTokenStore
from db.stores.todo_store import TodoStore
from db.stores.user_store import UserStore
from main import create_app
from services.auth_service import AuthService

# Initialize Faker for test data generation
fake = Faker()

TEST_SECRET = "test-secret-key"


class FakeClock:
    """Injectable clock the tests can move forward."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = dict(
        DB_SOURCE="sqlite+aiosqlite://",
        JWT_SECRET=TEST_SECRET,
        BCRYPT_ROUNDS=4,
        LOG_TO_FILE=False,
        LOG_LEVEL="WARNING",
        TOKEN_GC_INTERVAL_SECONDS=0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    engine = build_engine(settings)
    await initialize_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_store(session_factory) -> UserStore:
    return UserStore(session_factory)


@pytest.fixture
def blacklist_store(session_factory, clock) -> BlacklistStore:
    return BlacklistStore(session_factory, clock=clock)


@pytest.fixture
def refresh_store(session_factory, clock) -> RefreshTokenStore:
    return RefreshTokenStore(session_factory, clock=clock)


@pytest.fixture
def todo_store(session_factory) -> TodoStore:
    return TodoStore(session_factory)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec(blacklist_store, clock) -> AccessTokenCodec:
    return AccessTokenCodec(TEST_SECRET, blacklist_store, clock=clock)


@pytest.fixture
def auth_service(user_store, blacklist_store, refresh_store, codec, hasher, clock) -> AuthService:
    return AuthService(user_store, blacklist_store, refresh_store, codec, hasher, clock=clock)


@pytest.fixture
def app(settings, engine):
    return create_app(settings, engine=engine)


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async client talking to the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_payload() -> dict:
    """Registration body that satisfies every field rule."""
    return {
        "username": "user_" + fake.pystr(min_chars=6, max_chars=12),
        "email": fake.email(),
        "password": "Passw0rd" + fake.pystr(min_chars=4, max_chars=4),
    }


async def register_and_login(client: AsyncClient, payload: dict):
    response = await client.post("/api/v1/register", json=payload)
    assert response.status_code == 201, response.text
    response = await client.post(
        "/api/v1/login", json={"username": payload["username"], "password": payload["password"]}
    )
    assert response.status_code == 200, response.text
    return response


@pytest_asyncio.fixture
async def logged_in_client(async_client: AsyncClient, user_payload: dict) -> AsyncClient:
    """Client whose cookie jar holds a fresh session."""
    await register_and_login(async_client, user_payload)
    return async_client
