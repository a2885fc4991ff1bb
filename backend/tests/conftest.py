"""Pytest configuration and fixtures."""
import json
import os

# Must be set before the app (and its engine/settings) is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OPENPIX_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["OPENPIX_APP_ID"] = "test-app-id"
os.environ["CORS_ALLOW_ORIGIN"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth.dependencies import get_current_user
from app.auth.identity import AuthenticatedUser
from app.config import settings
from app.database import Base, get_db
from app.models.game import Game
from app.services.signature import sign
from main import app

TEST_USER_ID = "8f0c2f2e-4f43-4a57-9a0e-6b7f6f0a1c11"


@pytest.fixture
async def engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    """Session for seeding and direct service calls."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_user():
    return AuthenticatedUser(id=TEST_USER_ID, email="player@example.com")


def _override_db(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session
    return override_get_db


@pytest.fixture
async def client(session_factory, test_user):
    """Client authenticated as ``test_user``; each request gets its own session."""
    app.dependency_overrides[get_db] = _override_db(session_factory)
    app.dependency_overrides[get_current_user] = lambda: test_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def anon_client(session_factory):
    """Client without an authentication override."""
    app.dependency_overrides[get_db] = _override_db(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_game(test_db):
    """Factory inserting a game with rental defaults."""
    async def _make_game(**overrides) -> Game:
        fields = {
            "id": "g1",
            "slug": "bubbles-tiktok",
            "title": "Bubbles TikTok",
            "price_cents": 2490,
            "lifetime_price_cents": None,
            "rental_duration_days": 30,
            "is_lifetime_available": False,
            "status": "available",
        }
        fields.update(overrides)
        game = Game(**fields)
        test_db.add(game)
        await test_db.commit()
        return game
    return _make_game


@pytest.fixture
def webhook_secret():
    return settings.OPENPIX_WEBHOOK_SECRET


@pytest.fixture
def signed_webhook(webhook_secret):
    """Build (body, headers) for a payload signed like OpenPix does."""
    def _signed(payload, encoding: str = "hex"):
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "x-openpix-signature": sign(body, webhook_secret, encoding=encoding),
            "Content-Type": "application/json",
        }
        return body, headers
    return _signed
