"""
Database Engine and Session Management

Postgres (asyncpg) בפרודקשן, SQLite (aiosqlite) בפיתוח מקומי ובבדיקות.
"""
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import settings

Base = declarative_base()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine with options that fit the backend.

    In-memory SQLite must share a single connection, otherwise every
    session sees an empty database.
    """
    options: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return create_async_engine(url, **options)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; uncommitted work is rolled back on error"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
