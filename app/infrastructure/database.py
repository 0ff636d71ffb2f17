"""Database engine, declarative base and request sessions.

Production runs on PostgreSQL through asyncpg; tests use SQLite through
aiosqlite. Services commit their own steps, the request session only
finishes what is left.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.infrastructure.config import settings


class Base(DeclarativeBase):
    """Declarative base for all storefront tables."""


def build_engine(url: str, **options: Any) -> AsyncEngine:
    """Create an async engine with backend-appropriate pool settings.

    Args:
        url: SQLAlchemy async database URL.
        **options: Extra ``create_async_engine`` arguments.

    Returns:
        The engine.
    """
    if make_url(url).get_backend_name() != "sqlite":
        options.setdefault("pool_pre_ping", True)
    options.setdefault("echo", settings.debug)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose objects stay usable after commit."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session.

    Whatever is left pending when the request finishes is committed;
    an exception rolls it back.

    Yields:
        AsyncSession for database operations.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_database() -> None:
    """Run a trivial query, raising if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
