# daswos/core/db.py
"""
Database engine and session management for DasWos Coins (async).

Ключевые особенности:
- Никаких подключений при импорте модуля: движок создаётся явно (Database.from_settings)
  в lifespan приложения и закрывается на shutdown.
- Автоконвертация URL: postgres:// → postgresql+asyncpg://, sqlite:// → sqlite+aiosqlite://
- Дружелюбно к pytest (NullPool).
- Трансляция ошибок соединения/таймаутов в StoreUnavailableError (store_errors()).
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from daswos.core.exceptions import StoreUnavailableError
from daswos.core.logging import get_logger
from daswos.models import Base

if TYPE_CHECKING:  # pragma: no cover
    from daswos.core.config import Settings

logger = get_logger(__name__)

_STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, OSError)


def _normalize_async_url(url: str) -> str:
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql+"):
        return "postgresql+asyncpg://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _engine_options(url: str, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    opts = dict(options or {})
    opts.setdefault("pool_pre_ping", True)
    if url.startswith("sqlite"):
        for k in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
            opts.pop(k, None)
    else:
        opts.setdefault("pool_recycle", 1800)
    # pytest: аккуратнее
    if "PYTEST_CURRENT_TEST" in os.environ:
        opts["poolclass"] = NullPool
        for k in ("pool_size", "max_overflow", "pool_timeout"):
            opts.pop(k, None)
    opts.setdefault("echo", False)
    return opts


@contextmanager
def store_errors(operation: str, **context: Any) -> Iterator[None]:
    """
    Translate driver connectivity/timeout failures into StoreUnavailableError.

    Business errors (NotFound, InvalidArgument, ...) and integrity errors pass through.
    """
    try:
        yield
    except _STORE_ERRORS as e:
        logger.error("store_unavailable", operation=operation, error=str(e), **context)
        raise StoreUnavailableError(
            f"Wallet store is temporarily unavailable ({operation})",
            extra={"operation": operation},
        ) from e


class Database:
    """
    Owns one AsyncEngine and its session factory.

    Passed explicitly to everything that talks to the store; lifecycle is tied to
    the hosting process (FastAPI lifespan or a test fixture).
    """

    def __init__(self, url: str, *, engine_options: Optional[Dict[str, Any]] = None) -> None:
        self.url = _normalize_async_url(url)
        self.engine: AsyncEngine = create_async_engine(self.url, **_engine_options(self.url, engine_options))
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Database":
        return cls(settings.sqlalchemy_async_url, engine_options=settings.sqlalchemy_engine_options())

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        return self.session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session with an open transaction: commit on success, rollback on error."""
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        with store_errors("create_all"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        with store_errors("drop_all"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)

    async def _probe(self) -> Optional[str]:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            if self.dialect == "sqlite":
                return (await conn.execute(text("SELECT sqlite_version()"))).scalar_one_or_none()
            return (await conn.execute(text("SHOW server_version"))).scalar_one_or_none()

    async def health_check(self, timeout_seconds: float = 2.0) -> dict:
        try:
            version = await asyncio.wait_for(self._probe(), timeout=timeout_seconds)
            return {"ok": True, "error": None, "dialect": self.dialect, "server_version": version}
        except (asyncio.TimeoutError, *_STORE_ERRORS) as e:
            logger.error("db_health_check_failed", error=str(e))
            return {"ok": False, "error": str(e), "dialect": self.dialect, "server_version": None}

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("db_engine_disposed", dialect=self.dialect)


# -----------------------------------------------------------------------------
# FastAPI dependency
# -----------------------------------------------------------------------------
def get_database(request: Request) -> Database:
    return request.app.state.db


__all__ = ["Database", "store_errors", "get_database"]
