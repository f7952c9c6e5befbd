"""
Database engine, declarative base and session helpers.

The API process shares one module-level engine. Celery tasks run each batch
under a fresh event loop, and asyncpg connections cannot cross loops, so
``get_task_session`` builds and disposes a short-lived engine per task.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from notifier.core.config import settings

Base = declarative_base()


def _create_engine(**pool_options) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        **pool_options,
    )


def _session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Queue rows are read after commit when building results
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = _create_engine()
AsyncSessionLocal = _session_factory(engine)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an offset-aware datetime to naive UTC; naive values are taken as UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request"""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create the messaging tables if they do not exist yet"""
    import notifier.db.models  # noqa: F401  registers the tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_task_session() -> AsyncIterator[AsyncSession]:
    """Session on a throwaway engine bound to the calling task's event loop"""
    task_engine = _create_engine(pool_size=5, max_overflow=10)
    try:
        async with _session_factory(task_engine)() as session:
            yield session
    finally:
        await task_engine.dispose()
