"""
Database Connection Management

This module provides async database connectivity using SQLAlchemy's async engine.
PostgreSQL (asyncpg) is the production store; any async SQLAlchemy driver
works, which is how the test-suite runs against in-memory SQLite.

All cross-request shared state of the auth subsystem lives behind this
engine; request handlers receive one session per request through
``get_session``.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide async database session for dependency injection."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
