"""
Textbook API — Test Configuration (conftest.py)
================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Each test gets a fresh application built by create_app() with its own
       settings, so rate limiter state and app.state overrides never leak
       between tests.

Fixture Hierarchy (all function-scoped):
    ├── test_settings:     Settings pointing at a per-test SQLite file
    ├── app:               create_app(test_settings)
    ├── database:          app's Database with all tables created
    ├── mock_database:     Database stand-in whose query() is an AsyncMock
    ├── test_client:       HTTPX AsyncClient bound to `app`
    ├── make_auth_session: builds AuthSession values for stub verifiers
    └── sign_in_as:        installs a StubVerifier returning a session
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Set BEFORE any textbook_api import: the settings singleton reads them at import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["AUTH_SECRET"] = "test-secret-that-is-at-least-32-characters"
os.environ["AUTH_URL"] = "http://localhost:8000"
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from textbook_api.config import Settings  # noqa: E402
from textbook_api.database import Base, Database  # noqa: E402
from textbook_api.main import create_app  # noqa: E402
from textbook_api.models import profile as _profile_models  # noqa: E402,F401
from textbook_api.models import user as _user_models  # noqa: E402,F401
from textbook_api.schemas.auth import AuthSession, Principal, SessionInfo  # noqa: E402

TEST_SECRET = "test-secret-that-is-at-least-32-characters"


class StubVerifier:
    """SessionVerifier stand-in: returns a fixed session or raises a fixed error."""

    def __init__(self, session: Optional[AuthSession] = None, error: Optional[Exception] = None):
        self.session = session
        self.error = error
        self.calls = 0

    async def get_session(self, headers):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.session


def build_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///./test.db",
        "auth_secret": TEST_SECRET,
        "auth_url": "http://localhost:8000",
        "frontend_url": "http://localhost:3000",
        "environment": "test",
        "log_level": "WARNING",
        "password_hash_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return build_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest_asyncio.fixture
async def database(app):
    """
    The app's own Database handle, backed by a fresh SQLite file with every
    table created from the ORM metadata.
    """
    db: Database = app.state.database
    async with db.get_pool().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest.fixture
def mock_database():
    """
    Database stand-in for tests that must not touch SQL.

    Usage:
        app.state.database = mock_database
        mock_database.query.return_value = [{"user_id": "u1", ...}]
    """
    db = MagicMock(spec=Database)
    db.query = AsyncMock(return_value=[])
    return db


@pytest_asyncio.fixture
async def test_client(app):
    """HTTPX AsyncClient routed straight into the ASGI app (no server)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_auth_session():
    def _make(user_id: str = "user-1", email: str = "reader@example.com", name: str = "Reader"):
        now = datetime.now(timezone.utc)
        return AuthSession(
            user=Principal(id=user_id, email=email, name=name),
            session=SessionInfo(
                id=f"session-{user_id}",
                user_id=user_id,
                expires_at=now + timedelta(days=7),
                created_at=now,
                updated_at=now,
            ),
        )

    return _make


@pytest.fixture
def sign_in_as(app, make_auth_session):
    """
    Replace the app's session verifier so requests count as `user_id`.

    Usage:
        verifier = sign_in_as("user-1")
    """
    def _sign_in(user_id: str = "user-1") -> StubVerifier:
        verifier = StubVerifier(session=make_auth_session(user_id=user_id))
        app.state.session_verifier = verifier
        return verifier

    return _sign_in
