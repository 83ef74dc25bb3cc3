"""Async engine and session factories shared by the API, workers and tasks."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from perkmatch_api.core.settings import settings


def configure_sqlite_engine(async_engine: AsyncEngine) -> AsyncEngine:
    """Let SQLAlchemy own SQLite transaction boundaries.

    The sqlite3 driver defers BEGIN until the first DML statement, which breaks
    SAVEPOINT scoping. Emitting ``BEGIN IMMEDIATE`` ourselves also serializes
    writers across connections instead of failing on lock upgrades.
    """

    if async_engine.dialect.name != "sqlite":
        return async_engine

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_engine


engine = configure_sqlite_engine(create_async_engine(settings.database_url, future=True, pool_pre_ping=True))

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""

    async with async_session() as session:
        yield session


__all__ = ["engine", "async_session", "configure_sqlite_engine", "get_session"]
