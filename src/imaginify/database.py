"""Store connection manager -- one shared async engine per process.

The first ``get_connection()`` call starts a single connection attempt and
memoizes the in-flight task; concurrent first callers await that same task
instead of opening engines of their own.  Once the attempt succeeds the engine
is cached and returned immediately on every later call.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from imaginify.config import settings
from imaginify.errors import ConfigurationError, StoreTimeout, StoreUnavailable

log = structlog.get_logger()

T = TypeVar("T")


async def run_bounded(awaitable: Awaitable[T], timeout: float | None = None) -> T:
    """Await a store operation, raising StoreTimeout if it overruns.

    ``timeout`` defaults to ``settings.STORE_TIMEOUT_SECONDS``.  Driver
    failures other than integrity violations surface as StoreUnavailable;
    IntegrityError passes through for the repositories to classify.
    """
    limit = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError:
        raise StoreTimeout(f"Store operation exceeded {limit:g}s")
    except IntegrityError:
        raise
    except DBAPIError as exc:
        raise StoreUnavailable(f"Store call failed: {exc.orig}") from exc


def violated_field(exc: IntegrityError, fields: dict[str, tuple[str, ...]]) -> str | None:
    """Return the field whose unique constraint *exc* reports, if recognisable.

    *fields* maps a field name to the markers that identify it in a driver
    message: the PostgreSQL constraint name and the SQLite ``table.column``.
    """
    message = str(exc.orig)
    for field, markers in fields.items():
        if any(marker in message for marker in markers):
            return field
    return None


class StoreConnectionManager:
    """Lazily creates and caches the process-wide ``AsyncEngine``."""

    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self._pending: asyncio.Task[AsyncEngine] | None = None
        self.attempts = 0

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def get_connection(self) -> AsyncEngine:
        """Return the shared engine, connecting on first use.

        Raises ConfigurationError if DATABASE_URL is not set.
        """
        if self._engine is not None:
            return self._engine

        url = settings.DATABASE_URL
        if not url:
            raise ConfigurationError("DATABASE_URL is not configured")

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._connect(url))
        pending = self._pending

        try:
            # Shield so one cancelled caller does not abort the shared attempt.
            engine = await asyncio.shield(pending)
        except Exception:
            if self._pending is pending:
                self._pending = None
            raise

        self._engine = engine
        return engine

    async def _connect(self, url: str) -> AsyncEngine:
        self.attempts += 1
        log.info("store_connecting", attempt=self.attempts)
        engine = create_async_engine(url, pool_pre_ping=True)
        try:
            await run_bounded(self._ping(engine))
        except Exception as e:
            log.error("store_connection_failed", error=str(e))
            await engine.dispose()
            raise
        log.info("store_connected")
        return engine

    @staticmethod
    async def _ping(engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        """Return a session factory bound to the shared engine."""
        engine = await self.get_connection()
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False,
            )
        return self._sessionmaker

    async def dispose(self) -> None:
        """Close the engine. A later get_connection() reconnects."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self._pending = None


connection_manager = StoreConnectionManager()


async def get_connection() -> AsyncEngine:
    """Return the process-wide engine."""
    return await connection_manager.get_connection()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed on success."""
    factory = await connection_manager.sessionmaker()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
