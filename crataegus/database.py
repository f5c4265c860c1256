"""Async SQLAlchemy engine and session factory for the SQLite store."""

from __future__ import annotations

from pathlib import Path

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from crataegus.config import DatabaseSettings

logger = structlog.get_logger()


def database_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


def create_engine(settings: DatabaseSettings, path: Path | None = None) -> AsyncEngine:
    """Create an async engine tuned for many concurrent writers.

    Every pooled connection runs in WAL mode (readers never block the
    writer), enforces foreign keys, and waits up to ``busy_timeout_ms``
    for the write lock instead of failing immediately.
    """
    path = path or settings.path
    engine = create_async_engine(
        database_url(path),
        echo=False,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout_seconds,
        pool_pre_ping=True,
        connect_args={"timeout": settings.busy_timeout_ms / 1000},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.busy_timeout_ms)}")
            cursor.execute("PRAGMA synchronous=NORMAL")
        finally:
            cursor.close()

    logger.debug("engine_created", path=str(path), pool_size=settings.pool_size)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory."""
    return async_sessionmaker(engine, expire_on_commit=False)
