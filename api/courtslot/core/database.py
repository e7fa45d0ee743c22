"""Async database engine and session management.

Service functions never commit: the caller owns the transaction. Route handlers
get a request-scoped session from get_db(); background jobs and the notification
dispatcher open their own session from async_session_factory.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from courtslot.core.config import settings


def _engine_options(url: str) -> dict:
    # SQLite (tests, local tooling) has no server-side pool to tune, and the
    # busy timeout lets a second writer wait for the first instead of failing.
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


def _use_immediate_transactions(async_engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock when it begins.

    With the driver's deferred BEGIN, two transactions that both read and then
    write can each hold a shared lock while waiting for the other, and SQLite
    fails one of them with "database is locked". BEGIN IMMEDIATE queues them
    on the busy timeout instead.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_options(settings.database_url),
)
if settings.database_url.startswith("sqlite"):
    _use_immediate_transactions(engine)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
