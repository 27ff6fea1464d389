"""
Database engine and session management.

Async SQLAlchemy engine backing the holdings store.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from finsight.core.config import settings

Base = declarative_base()

engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Get (lazily create) the shared async engine."""
    global engine
    if engine is None:
        engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            echo=settings.DB_ECHO,
            pool_pre_ping=True,
        )
    return engine


def AsyncSessionLocal() -> AsyncSession:
    """Open a new session bound to the shared engine."""
    return async_sessionmaker(get_engine(), expire_on_commit=False)()


async def create_tables() -> None:
    """Create holdings tables (local development only; no migrations)."""
    import finsight.models  # noqa: F401  registers tables on Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine and its pooled connections."""
    global engine
    if engine is not None:
        await engine.dispose()
        engine = None
