"""Database configuration for the onboarding service.

Async SQLAlchemy with SQLite (dev/tests) or PostgreSQL (prod), selected by
the DATABASE_URL environment variable. The API process and the Temporal
worker each build their own engine from the same URL; hire, task, template,
notification and bulk job tables all live in the one database.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sqlalchemy
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


def _normalize_url(url: str) -> str:
    """Spell out the async driver for plain postgres URLs (Heroku, docker-compose)."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


DATABASE_URL = _normalize_url(os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./onboarding.db"))
IS_SQLITE = DATABASE_URL.startswith("sqlite")

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

# The scheduler and bulk jobs write while requests read
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000"))

engine: AsyncEngine = create_async_engine(
    DATABASE_URL,
    echo=os.getenv("DB_ECHO", "false").lower() == "true",
    # SQLite doesn't support pool settings
    **({} if IS_SQLITE else {"pool_size": DB_POOL_SIZE, "max_overflow": DB_MAX_OVERFLOW}),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request, committed on success."""
    async with get_session_ctx() as session:
        yield session


@asynccontextmanager
async def get_session_ctx() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work outside a request: scheduler ticks, bulk hires, worker sync, lifespan seeding."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables. Schema migrations are not managed here."""
    from .models import db  # noqa: F401  (registers tables on Base.metadata)

    if IS_SQLITE:
        async with engine.begin() as conn:
            await conn.execute(sqlalchemy.text("PRAGMA journal_mode=WAL"))
            await conn.execute(sqlalchemy.text(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
