from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from realtorpro.config import settings
from realtorpro.services.billing.errors import BillingStorageError

logger = logging.getLogger(__name__)

# Global variables for database
engine: object | None = None
async_session: async_sessionmaker[AsyncSession] | None = None


async def init_database():
    """Initialize database connection if DATABASE_URL is provided."""
    global engine, async_session

    if not settings.database_url:
        logger.info("No DATABASE_URL provided, running without database")
        return

    try:
        engine_kwargs = {
            "echo": settings.debug,
            "pool_pre_ping": True,
        }
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs["pool_size"] = max(settings.db_pool_min_size, 1)
            engine_kwargs["max_overflow"] = max(
                settings.db_pool_max_size - settings.db_pool_min_size, 0
            )
            engine_kwargs["pool_recycle"] = 300
        engine = create_async_engine(settings.database_url, **engine_kwargs)

        async_session = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        if settings.auto_create_schema:
            from realtorpro.models import collection, payment, user  # noqa: F401

            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database schema ensured")

        logger.info("Database connection initialized successfully")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_database() -> None:
    global engine, async_session
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session = None


async def get_database() -> AsyncIterator[AsyncSession | None]:
    """Get database session."""
    if not async_session:
        yield None
        return

    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open a session outside the request lifecycle (queue worker, access gate, CLI)."""
    if not async_session:
        raise BillingStorageError("Database not configured", code="DB_NOT_CONFIGURED")
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def check_database_health() -> bool:
    """Check if database is accessible."""
    if not engine:
        return True  # No database configured, consider healthy

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
