"""
Async database engine, session factory and startup connection check.

Uses SQLAlchemy 2.x async engine (asyncpg for PostgreSQL, aiosqlite for
local development and tests). The engine and session factory are created
once at startup and handed to the BucketStore; nothing here is stored at
module level.

wait_for_database() is the only place where the service retries a failing
connection a bounded number of times and then gives up for good.

CHANGELOG:
- 2026-03-01: Replace module-level singletons with explicit factories;
  add bounded startup connection check (STORY-104)
- 2026-02-27: Initial creation (STORY-102)
"""

import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from powerstats.db.models import Base
from powerstats.errors import TransientStoreError

logger = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy async URL.

    Returns:
        AsyncEngine: Configured async engine.
    """
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    Args:
        engine: The async engine sessions will use.

    Returns:
        async_sessionmaker: Factory for creating AsyncSession instances.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def wait_for_database(
    engine: AsyncEngine,
    max_attempts: int,
    retry_delay_s: float,
) -> None:
    """Block until the database answers ``SELECT 1`` or attempts run out.

    Args:
        engine: Engine to check.
        max_attempts: Number of connection attempts.
        retry_delay_s: Seconds to wait between attempts.

    Raises:
        TransientStoreError: If every attempt failed. The caller is startup
            code, which treats this as fatal.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OSError, SQLAlchemyError) as exc:
            logger.warning(
                "Database connection attempt %d/%d failed: %s",
                attempt,
                max_attempts,
                exc,
            )
            if attempt == max_attempts:
                raise TransientStoreError(
                    f"Database unreachable after {max_attempts} attempts"
                ) from exc
            await asyncio.sleep(retry_delay_s)
        else:
            logger.info("Connected to database on attempt %d", attempt)
            return


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from the ORM metadata.

    For development and tests only; production schemas come from Alembic.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
