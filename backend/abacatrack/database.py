"""Database engine, session factory, and the transactional unit of work.

  - build_engine()   → async engine; SQLite engines are switched to
                       BEGIN IMMEDIATE so concurrent writers serialize
  - get_db()         → FastAPI dependency for unlocked report reads
  - atomic()         → one timed transaction; every engine call runs in one
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from abacatrack.config import settings
from abacatrack.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for every AbacaTrack table."""
    pass


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """SQLite ignores SELECT ... FOR UPDATE, so take the write lock up front."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"timeout": 30})
        engine = create_async_engine(url, **kwargs)
        _serialize_sqlite_writers(engine)
        return engine

    kwargs.setdefault("pool_size", 20)
    kwargs.setdefault("max_overflow", 10)
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.database_url, echo=settings.debug)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a plain session (no row locks) for dashboard reads."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Unit of work ────────────────────────────────────────────

@asynccontextmanager
async def atomic(
    session_factory: async_sessionmaker,
    timeout: float,
) -> AsyncIterator[AsyncSession]:
    """Run the body in one transaction bounded by ``timeout`` seconds.

    Anything raised inside the block rolls the transaction back.  Expiry of
    the timeout cancels the in-flight statement, rolls back, and surfaces as
    StorageUnavailable, so a timed-out call never leaves a partial write.
    """
    try:
        async with asyncio.timeout(timeout):
            async with session_factory() as session:
                async with session.begin():
                    yield session
    except TimeoutError as exc:
        logger.error(f"Storage call exceeded {timeout}s and was rolled back")
        raise StorageUnavailable(f"Storage call timed out after {timeout}s") from exc
    except PoolTimeoutError as exc:
        logger.error(f"No database connection available: {exc}")
        raise StorageUnavailable("No database connection available") from exc
    except OperationalError as exc:
        logger.error(f"Database operational error: {exc}")
        raise StorageUnavailable("Database temporarily unavailable") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error(f"Database connection lost: {exc}")
            raise StorageUnavailable("Database connection lost") from exc
        raise


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored as naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
