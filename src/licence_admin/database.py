"""Database connection and session management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from licence_admin.config import get_settings

settings = get_settings()


def _engine_options() -> dict[str, Any]:
    if settings.is_sqlite:
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        # Validate connections before checkout to detect stale connections
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def configure_sqlite_engine(sqlite_engine: AsyncEngine) -> AsyncEngine:
    """Make SQLAlchemy emit BEGIN itself so SAVEPOINTs work on SQLite."""

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = create_async_engine(
    settings.async_database_url,
    # Never echo SQL statements as they may contain sensitive data
    echo=False,
    **_engine_options(),
)
if settings.is_sqlite:
    configure_sqlite_engine(engine)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise
