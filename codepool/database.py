"""Database engine and session factory for the durable URL store.

This module builds the SQLAlchemy async engine and session factory from
Settings. The pool only ever reads from PostgreSQL; schema migrations belong
to the URL service that owns the table.

How to Use
===========
**Step 1 — Build an engine**::
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

**Step 2 — Open a session**::
    async with session_factory() as session:
        result = await session.execute(select(URL.short_code))

**Step 3 — Cleanup on shutdown**::
    await engine.dispose()

Key Behaviours
===============
- Connection pooling is configured from Settings.
- pool_pre_ping drops stale connections before use.
- Statement echo is enabled only in development.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Async engine from Settings.
    create_session_factory():  Session factory bound to an engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from codepool.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=(settings.APP_ENV == "development" and settings.LOG_LEVEL.upper() == "DEBUG"),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
