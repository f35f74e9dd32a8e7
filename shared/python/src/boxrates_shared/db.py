"""
db.py — Async SQLAlchemy engine and session factory construction.

No module-level singletons: the composition root (or a test fixture)
builds one engine per process and hands the sessionmaker to the store.

Usage:
    from boxrates_shared.db import create_engine, create_sessionmaker

    engine = create_engine(settings.database_url)
    sessions = create_sessionmaker(engine)
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from boxrates_shared.schema import Base

logger = structlog.get_logger(__name__)


def create_engine(url: str, *, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    """
    Build an async engine for the given URL.

    SQLite (aiosqlite) connections get the driver hooks SQLAlchemy documents
    for reliable SAVEPOINT handling: autocommit at the DBAPI level and an
    explicit BEGIN emitted by SQLAlchemy.
    """
    is_sqlite = url.startswith("sqlite")
    if not is_sqlite:
        kwargs.setdefault("pool_pre_ping", True)

    engine = create_async_engine(url, echo=echo, **kwargs)

    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):  # noqa: ANN001
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _sqlite_begin(conn):  # noqa: ANN001
            conn.exec_driver_sql("BEGIN")

    logger.info("db_engine_created", dialect=engine.dialect.name)
    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create every table (development databases and tests only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_tables_created", tables=sorted(Base.metadata.tables))
