"""
Async engine and session factory.

PostgreSQL runs every booking transaction at the configured isolation level
(SERIALIZABLE by default) with a bounded lock_timeout, so contention on a hot
seat or stock row surfaces as a retryable error instead of blocking forever.

SQLite (local development and the test suite) cannot run concurrent writers;
transactions are started with BEGIN IMMEDIATE so writers queue on the
database lock instead of deadlocking on lock upgrades.
"""

from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from boxoffice.core.config import get_settings

settings = get_settings()


def create_engine_for(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(url, connect_args={"timeout": 30}, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        isolation_level=settings.DB_ISOLATION_LEVEL,
        connect_args={"server_settings": {"lock_timeout": str(settings.DB_LOCK_TIMEOUT_MS)}},
        **kwargs,
    )


engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Booking-engine services commit their own units of
    work; anything left open here (plain reads) is committed on the way out.
    """
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
