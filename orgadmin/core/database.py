"""
Database connection, session management and the transaction boundary.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from orgadmin.core.config import get_settings

settings = get_settings()

T = TypeVar("T")

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool if settings.database_url.startswith("sqlite") else None,
    future=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db():
    """Create all tables (development and tests only)."""
    import orgadmin.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency for callers that fan out over several sessions."""
    return async_session_factory


@asynccontextmanager
async def get_session_context():
    """Context manager for use outside of FastAPI request lifecycle."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def transaction(
    session: AsyncSession, fn: Callable[[AsyncSession], Awaitable[T]]
) -> T:
    """Run ``fn`` atomically against ``session``.

    Commits when ``fn`` returns; rolls back and re-raises on any error, so a
    multi-statement write is either fully applied or not at all.
    """
    try:
        result = await fn(session)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return result
