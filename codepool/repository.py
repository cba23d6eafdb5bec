"""Read access to the durable URL store for pool maintenance.

The pool needs exactly two things from PostgreSQL: the set of short codes
already assigned, and whether the database is reachable at all.

How to Use
===========
**Step 1 — Build and connect**::
    repository = UrlRepository.from_settings(settings)
    await repository.connect()

**Step 2 — Query**::
    used = await repository.list_all_short_codes()

**Step 3 — Cleanup on shutdown**::
    await repository.close()

Key Behaviours
===============
- connect() retries with exponential backoff and never raises; it records
  reachability in is_connected.
- health_check() is strict and raises when the database is unreachable.
- A connection-level failure during a query flips is_connected to False
  before the error propagates.
"""

import asyncio
import logging

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from codepool.config import Settings
from codepool.database import create_engine, create_session_factory
from codepool.logger import setup_logger
from codepool.models import URL

__all__ = ["UrlRepository"]


class UrlRepository:
    """Durable-store collaborator used by the pool manager."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
        logger: logging.Logger | None = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.logger = logger or setup_logger("url-repository")
        self.is_connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "UrlRepository":
        engine = create_engine(settings)
        return cls(
            create_session_factory(engine),
            engine=engine,
            logger=setup_logger("url-repository", settings.LOG_LEVEL),
            retry_attempts=settings.DATABASE_RETRY_ATTEMPTS,
            retry_base_delay=settings.DATABASE_RETRY_BASE_DELAY_SECONDS,
        )

    async def connect(self) -> bool:
        """Probe the database with exponential backoff; report reachability, never raise."""
        last_error: SQLAlchemyError | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                await self.health_check()
            except SQLAlchemyError as e:
                last_error = e
                self.logger.warning(f"Database connection attempt {attempt}/{self.retry_attempts} failed: {e!r}")
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_base_delay * 2**attempt)
                continue

            self.logger.info(f"Connected to database on attempt {attempt}")
            return True

        self.logger.error(f"Failed to connect to database after {self.retry_attempts} attempts: {last_error!r}")
        return False

    async def health_check(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            self.is_connected = False
            raise
        self.is_connected = True
        return True

    async def list_all_short_codes(self) -> list[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(URL.short_code))
                return list(result.scalars().all())
        except (OperationalError, DBAPIError) as e:
            if isinstance(e, OperationalError) or e.connection_invalidated:
                self.is_connected = False
            raise

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self.is_connected = False
        self.logger.info("Disconnected from database")
