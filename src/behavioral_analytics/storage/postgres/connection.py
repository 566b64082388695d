"""PostgreSQL access for one analysis run.

:func:`open_database` builds a :class:`Database` from the configured URL:
the async engine and the session factory bound to it are created together
and disposed together.  Repositories take a scoped session from
:meth:`Database.session`; the SQL cache backend takes
:attr:`Database.sessions` directly because it opens short sessions of its
own per cache operation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)


def _redact(url: str) -> str:
    return url.split("@")[-1]


@dataclass
class Database:
    """Engine plus its session factory."""

    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        echo: bool = False,
        use_null_pool: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ) -> Database:
        """Create the engine and bind a session factory to it.

        Args:
            url: ``postgresql+asyncpg://`` connection URL.
            echo: Log emitted SQL.
            use_null_pool: Open a fresh connection per checkout. Used by
                one-shot CLI commands that exit after a single analysis.
            pool_size: Persistent connections kept when pooling.
            max_overflow: Extra connections allowed beyond *pool_size*.
        """
        kwargs: dict[str, Any] = {"echo": echo}
        if use_null_pool:
            kwargs["poolclass"] = NullPool
        else:
            kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        engine = create_async_engine(url, **kwargs)
        logger.info("Opened behavior database at %s", _redact(url))
        return cls(
            engine=engine,
            sessions=async_sessionmaker(
                bind=engine, class_=AsyncSession, expire_on_commit=False,
            ),
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on exit and rolls back on exception."""
        session = self.sessions()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_tables(self) -> None:
        """Create every behavioral table missing from the database."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Behavior tables created / verified")

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Behavior database closed")


@asynccontextmanager
async def open_database(
    url: str,
    *,
    create_tables: bool = False,
    **engine_options: Any,
) -> AsyncIterator[Database]:
    """Open a :class:`Database` for the duration of the block.

    *engine_options* are passed to :meth:`Database.from_url`.  With
    *create_tables* the ORM schema is created first (development and test
    databases; production schemas come from Alembic).
    """
    db = Database.from_url(url, **engine_options)
    try:
        if create_tables:
            await db.create_tables()
        yield db
    finally:
        await db.close()
