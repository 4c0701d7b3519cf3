"""
GrantMatch Database Connection Setup
Async engine for the API and pipeline, sync engine for Celery workers.
"""

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from backend.core.config import settings
from backend.models import Base


def engine_options(url: str, pool_size: int, max_overflow: int) -> dict[str, Any]:
    """Pool settings for a database URL. SQLite uses the driver's default pool."""
    options: dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return options


# =============================================================================
# Async Engine and Session (for FastAPI and the discovery pipeline)
# =============================================================================

async_engine = create_async_engine(
    settings.async_database_url,
    **engine_options(settings.async_database_url, pool_size=10, max_overflow=20),
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Commits on success and rolls back if the request handler raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for async database sessions outside of FastAPI routes.

    Usage:
        async with get_async_session() as session:
            grants = await load_grants(session)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# =============================================================================
# Sync Engine and Session (for Celery workers)
# =============================================================================

sync_engine = create_engine(
    settings.database_url,
    **engine_options(settings.database_url, pool_size=5, max_overflow=10),
)

SyncSessionLocal = sessionmaker(
    bind=sync_engine,
    autoflush=False,
)


def get_sync_db() -> Session:
    """
    Get a synchronous database session for Celery workers.

    Returns a session that must be manually closed.
    """
    return SyncSessionLocal()


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for synchronous database sessions."""
    session = SyncSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Database Initialization
# =============================================================================


async def init_db() -> None:
    """
    Create all tables.

    Development and testing only; production schemas are managed separately.
    """
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of async connections on application shutdown."""
    await async_engine.dispose()


def close_sync_db() -> None:
    """Dispose of sync connections when a Celery worker shuts down."""
    sync_engine.dispose()


# =============================================================================
# Health Check
# =============================================================================


async def check_db_connection() -> dict[str, Any]:
    """
    Check database connectivity for health checks.

    Returns:
        dict with connection status and details
    """
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "database": "connected",
            }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
        }
