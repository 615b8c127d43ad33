"""Database configuration and session management for the short-link service.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations. PostgreSQL (asyncpg) is the production
backend; SQLite (aiosqlite) is supported for local runs and tests.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │  Repository │
    │  call       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ session     │
    │ factory     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Create async │
    │ session     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Run query / │
    │ commit      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (context)    │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Open a session**::
    async with async_session() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Every repository call opens its own short-lived session, so detached
  click-recording tasks never share a session with the request that spawned them.
- Connection pooling is configured for PostgreSQL; SQLite uses the driver default.
- Foreign keys are enforced on SQLite so link deletion cascades to clicks.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine_for_url():  Engine factory used by the app and tests.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "async_session", "create_engine_for_url", "init_db", "close_db"]

settings = get_settings()


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for_url(url: str, **kwargs: Any) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(url, **kwargs)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    kwargs.setdefault("pool_size", settings.DB_POOL_SIZE)
    kwargs.setdefault("max_overflow", settings.DB_MAX_OVERFLOW)
    kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


engine = create_engine_for_url(
    settings.DATABASE_URL,
    echo=(settings.APP_ENV == "development"),
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
