"""Async SQLAlchemy engine + session factory.

SQLite (aiosqlite) in dev/tests, PostgreSQL (asyncpg) in production.
"""
from __future__ import annotations

import ssl

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from config.settings import settings


def async_database_url(url: str) -> str:
    """Map plain driver URLs onto the async drivers the app ships with."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


_db_url = async_database_url(settings.DATABASE_URL)
_is_sqlite = _db_url.startswith("sqlite")

_engine_kwargs: dict = {
    "echo": False,
    "future": True,
}

if not _is_sqlite:
    # PostgreSQL pool
    _engine_kwargs.update({
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    })
    if settings.DATABASE_SSL:
        _engine_kwargs["connect_args"] = {"ssl": ssl.create_default_context()}

engine = create_async_engine(_db_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """Dependency for FastAPI — yields an async session."""
    async with async_session() as session:
        yield session
