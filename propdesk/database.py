"""
Database access for the trading engine.

One async engine per process, built from DATABASE_URL: SQLite through
aiosqlite for local runs and tests, PostgreSQL through asyncpg in
production. Services never open sessions of their own; each one receives
the caller's AsyncSession, and the caller owns commit and rollback.
"""

import enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from propdesk.config import settings

engine = create_async_engine(settings.database_url, echo=settings.sql_echo)

# Rows stay usable after commit; the executor reads them back for responses
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the engine's tables."""
    pass


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """values_callable for sqlalchemy.Enum: persist member values, not names."""
    return [member.value for member in enum_cls]


async def init_db() -> None:
    """Create missing tables at startup.

    Schema changes on an existing database are not applied here.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncSession:
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
