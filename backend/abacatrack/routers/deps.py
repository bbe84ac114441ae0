"""Shared router dependencies: database handles and the two services.

Tests override ``get_session_factory`` and ``get_db_engine`` to point the
whole HTTP surface at a throwaway database.
"""

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from abacatrack import database
from abacatrack.services.allocation import AllocationEngine
from abacatrack.services.lifecycle import UnitLifecycle


def get_db_engine() -> AsyncEngine:
    return database.engine


def get_session_factory() -> async_sessionmaker:
    return database.async_session


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncIterator[AsyncSession]:
    """Plain session for report reads (no row locks, no writes).

    On SQLite the BEGIN IMMEDIATE hook still takes the database write lock,
    so reports serialize with engine writers there.  PostgreSQL reads here
    take no locks.
    """
    async with session_factory() as session:
        yield session


def get_allocation_engine(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AllocationEngine:
    return AllocationEngine(session_factory)


def get_unit_lifecycle(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> UnitLifecycle:
    return UnitLifecycle(session_factory)
