"""Pytest configuration and fixtures for AbacaTrack tests.

Every test gets its own SQLite database file under tmp_path, created from
the ORM metadata.  SQLite engines built by ``build_engine`` open every
transaction with BEGIN IMMEDIATE, so the concurrency tests exercise real
writer serialization.

Note: a session that has executed anything holds the SQLite write lock
until it is closed.  Do reads in a short ``async with session_factory()``
block before calling the engine again.  The same holds for the report
sessions from ``routers.deps.get_db``: they are not row-locked, but on
SQLite they queue behind (and block) engine writers.
"""

import os

# Settings are read at import time; keep tests off Redis and the scheduler.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./abacatrack-dev.db")
os.environ.setdefault("REPORT_CACHE_ENABLED", "false")
os.environ.setdefault("AUDIT_SCHEDULER_ENABLED", "false")

from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from abacatrack import models  # noqa: F401
from abacatrack.auth.jwt import create_access_token
from abacatrack.database import Base, build_engine
from abacatrack.main import app
from abacatrack.models.harvest import HarvestBatch, VerificationStatus
from abacatrack.routers.deps import get_db_engine, get_session_factory
from abacatrack.services.allocation import AllocationEngine
from abacatrack.services.lifecycle import UnitLifecycle

# Generous bound for tests; the timeout tests pass their own
TEST_TIMEOUT = 30.0


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with every table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'abacatrack.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def allocation_engine(session_factory) -> AllocationEngine:
    return AllocationEngine(session_factory, timeout=TEST_TIMEOUT)


@pytest.fixture
def lifecycle(session_factory) -> UnitLifecycle:
    return UnitLifecycle(session_factory, timeout=TEST_TIMEOUT)


@pytest_asyncio.fixture
async def client(test_engine, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, with storage pointed at the test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db_engine] = lambda: test_engine

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def verified_harvest(allocation_engine: AllocationEngine) -> Callable:
    """Factory: record a harvest batch and mark it verified."""

    async def _make(quantity="100", resource_kind="tangongon", grade="S2") -> HarvestBatch:
        harvest = await allocation_engine.record_harvest(
            farmer_id="farmer-1",
            resource_kind=resource_kind,
            quantity=quantity,
            grade=grade,
        )
        return await allocation_engine.set_harvest_verification(
            harvest.id, VerificationStatus.VERIFIED, verified_by="officer-1"
        )

    return _make


@pytest.fixture
def auth_headers() -> Callable[[str, str], dict]:
    """Factory: bearer headers for a user id and role."""

    def _headers(user_id: str, role: str) -> dict:
        token = create_access_token(user_id=user_id, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
