"""Shared fixtures for headshot_engine tests.

Tests run against SQLite via aiosqlite so no PostgreSQL instance is needed.
Postgres-specific column types are swapped for SQLite-friendly ones once at
import time.
"""

from __future__ import annotations

from datetime import UTC

import pytest
import pytest_asyncio
from headshot_engine.state.repository import ProfileRepository
from headshot_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from headshot_engine.state.tables import Base
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.types import TypeDecorator


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility.

    * ``JSONB`` -> ``JSON`` (SQLite has no JSONB type compiler).
    * ``DateTime(timezone=True)`` -> ``DateTime()`` with an explicit
      :class:`~sqlalchemy.TypeDecorator` that coerces naive datetimes
      returned by SQLite back to UTC-aware.
    """

    class _UTCAwareDateTime(TypeDecorator):
        """SQLAlchemy TypeDecorator that ensures datetimes are always UTC-aware."""

        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    eng = get_local_engine(":memory:")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine; each session gets its own connection."""
    eng = get_local_engine(tmp_path / "state.db")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Provide an async session backed by the in-memory database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed_profile(session_factory):
    """Return a coroutine function that upserts a profile row and commits."""

    async def _seed(user_id: str, tier: str, factory: async_sessionmaker | None = None) -> None:
        async with (factory or session_factory)() as session:
            await ProfileRepository(session).upsert(user_id, tier)
            await session.commit()

    return _seed
