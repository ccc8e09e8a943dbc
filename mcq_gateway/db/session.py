"""Async SQLAlchemy engine and unit-of-work sessions."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mcq_gateway.config import DatabaseSettings, GatewaySettings, get_settings
from mcq_gateway.db.base import Base
from mcq_gateway.db.models import core  # noqa: F401
from mcq_gateway.logging import logger

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def build_engine(db_cfg: DatabaseSettings) -> AsyncEngine:
    return create_async_engine(
        db_cfg.dsn,
        echo=db_cfg.echo,
        pool_size=db_cfg.pool_size,
        max_overflow=db_cfg.max_overflow,
        pool_recycle=db_cfg.pool_recycle,
        pool_pre_ping=db_cfg.pool_pre_ping,
    )


class Database:
    """Engine is created on first use so the app can start without a reachable database."""

    def __init__(self, settings: GatewaySettings | None = None) -> None:
        self.settings = settings or get_settings()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = build_engine(self.settings.database)
            logger.info("db_engine_initialized")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """One short transaction: commit on success, roll back on error.

        Services open a scope per operation so no lock or pooled connection
        outlives the statement group that needs it.
        """

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create missing tables; production schemas are managed by migrations."""

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("db_schema_ensured")

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


__all__ = ["Database", "SessionScope", "build_engine"]
