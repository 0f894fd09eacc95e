"""
Explicit database handle.

The application owns exactly one Database, created in the lifespan and stored on
app.state. Components receive sessions from it instead of reaching for a global
engine.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.models import Base

logger = logging.getLogger(__name__)


class DatabaseUnavailable(RuntimeError):
    """Raised when the store cannot be reached within the configured timeout."""


class Database:
    def __init__(self, url: str, connect_timeout: float = 5.0, echo: bool = False):
        self.url = url
        self.connect_timeout = connect_timeout
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseUnavailable("Database.connect() has not been called")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self) -> None:
        """Create the engine, make sure tables exist and check the store answers."""
        if self._engine is not None:
            return
        engine = create_async_engine(self.url, echo=self._echo, pool_pre_ping=True)
        try:
            await asyncio.wait_for(self._prepare(engine), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            await engine.dispose()
            logger.error(f"Database not ready after {self.connect_timeout}s")
            raise DatabaseUnavailable("Timed out connecting to the database") from e
        except Exception as e:
            await engine.dispose()
            error_msg = str(e)
            if "Name or service not known" in error_msg:
                logger.error("Cannot resolve database hostname. Check DATABASE_URL.")
            elif "Connection refused" in error_msg:
                logger.error("Database server is not accepting connections.")
            elif "password authentication failed" in error_msg:
                logger.error("Database authentication failed. Check credentials in DATABASE_URL.")
            else:
                logger.error(f"Database connection failed: {error_msg}", exc_info=True)
            raise DatabaseUnavailable(error_msg) from e

        self._engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Database connection established and tables checked/created.")

    async def _prepare(self, engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text("SELECT 1"))

    async def ping(self) -> bool:
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=self.connect_timeout)
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise DatabaseUnavailable("Database.connect() has not been called")
        async with self._sessionmaker() as session:
            yield session

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database connections closed.")
        self._engine = None
        self._sessionmaker = None
