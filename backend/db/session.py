"""
Repricer Database Session Management

Async SQLAlchemy engine and session factory, plus a short-lived session
helper for Celery tasks and scripts that run their own event loop.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    # SQLite drivers reject QueuePool sizing arguments.
    if database_url.startswith("sqlite"):
        return {"echo": settings.database_echo}
    return {
        "echo": settings.database_echo,
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def standalone_session(database_url: str | None = None) -> AsyncIterator[AsyncSession]:
    """
    Yield a session bound to a throwaway engine.

    asyncio.run() creates a fresh loop per task invocation, so workers cannot
    reuse the module-level pool created under the API's loop.
    """
    url = database_url or settings.database_url
    task_engine = create_async_engine(url, echo=settings.database_echo)
    try:
        session_factory = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            yield db
    finally:
        await task_engine.dispose()


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
