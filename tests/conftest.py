"""
Ediens Backend — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Services run against a real (SQLite) database so the claim lifecycle,
       its constraints and its version counters are exercised end to end.
How:   Every test gets a fresh SQLite file in tmp_path with the full schema
       created from Base.metadata. The FastAPI app is pointed at it by
       overriding get_session_factory.

Fixture Hierarchy:
    engine → session_factory → users (owner, claimant, other_claimant,
    stranger) → post_factory / post → claim_service (with a private bus)
    test_client: HTTPX AsyncClient against the app, same database
"""

import os
import tempfile

# Override settings for testing BEFORE any ediens imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="ediens_test_")
os.environ["JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"
os.environ["TRANSITION_RETRY_MIN_WAIT"] = "0"
os.environ["TRANSITION_RETRY_MAX_WAIT"] = "0"

from datetime import timedelta
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ediens.database import Base, get_session_factory
from ediens.models.common import utcnow
from ediens.models.food_post import FoodPost, PostStatus, Urgency
from ediens.models.user import User
from ediens.services.auth_service import auth_service
from ediens.services.claim_service import ClaimService
from ediens.services.notifications import NotificationBus

# Imported for table registration
from ediens.models.claim import Claim  # noqa: F401
from ediens.models.message import Message  # noqa: F401

TEST_PASSWORD = "Secret123"


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test, schema created from the models."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ediens.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ══════════════════════════════════════════════════════════════════════════
# Data factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def user_factory(session_factory):
    """
    Inserts a user and returns the detached instance.

    Usage:
        user = await user_factory("ann@example.com", first_name="Ann")
    """

    async def create(email: str, **fields) -> User:
        values = {
            "first_name": "Test",
            "last_name": "User",
            "city": "Riga",
            "password_hash": auth_service.hash_password(TEST_PASSWORD),
        }
        values.update(fields)
        async with session_factory() as session:
            async with session.begin():
                user = User(email=email, **values)
                session.add(user)
        return user

    return create


@pytest_asyncio.fixture
async def owner(user_factory):
    return await user_factory("owner@example.com", first_name="Olga", last_name="Owner")


@pytest_asyncio.fixture
async def claimant(user_factory):
    return await user_factory("claimant@example.com", first_name="Carl", last_name="Claimant")


@pytest_asyncio.fixture
async def other_claimant(user_factory):
    return await user_factory("second@example.com", first_name="Sana", last_name="Second")


@pytest_asyncio.fixture
async def stranger(user_factory):
    return await user_factory("stranger@example.com", first_name="Stan", last_name="Stranger")


@pytest.fixture
def post_factory(session_factory, owner):
    """Inserts an available food post owned by `owner` (by default)."""

    async def create(
        quantity: int = 5,
        max_reservations: Optional[int] = None,
        owner_user: Optional[User] = None,
        **fields,
    ) -> FoodPost:
        values = {
            "title": "Fresh bread",
            "description": "Two loaves of sourdough from this morning",
            "category": "bakery",
            "unit": "piece",
            "latitude": 56.9496,
            "longitude": 24.1052,
            "address": "Brivibas iela 1",
            "city": "Riga",
            "expiry_date": utcnow() + timedelta(days=2),
            "status": PostStatus.AVAILABLE.value,
            "urgency": Urgency.MEDIUM.value,
        }
        values.update(fields)
        async with session_factory() as session:
            async with session.begin():
                post = FoodPost(
                    user_id=(owner_user or owner).id,
                    quantity=quantity,
                    max_reservations=max_reservations,
                    **values,
                )
                session.add(post)
        return post

    return create


@pytest_asyncio.fixture
async def post(post_factory):
    return await post_factory()


@pytest.fixture
def pickup_date():
    return utcnow() + timedelta(days=1)


# ══════════════════════════════════════════════════════════════════════════
# Services
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def claim_service(session_factory, bus):
    return ClaimService(session_factory, bus)


@pytest.fixture
def auth_headers():
    def headers_for(user: User) -> dict:
        return {"Authorization": f"Bearer {auth_service.create_access_token(user)}"}

    return headers_for


@pytest_asyncio.fixture
async def test_client(session_factory):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    The lifespan is not run, so the expiry sweeper stays off.
    """
    from ediens.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
