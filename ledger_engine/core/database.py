"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from .config import settings, DatabaseConfig
from .exceptions import DatabaseError
from .logging import get_logger

logger = get_logger(__name__)

# Global engine and session maker
async_engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given (sync or async style) URL."""
    url = url or settings.database_url
    return create_async_engine(
        DatabaseConfig.get_database_url(url, async_driver=True),
        **DatabaseConfig.get_engine_config(url),
        echo=echo
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_database(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Initialize database connections and session makers."""
    global async_engine, async_session_maker

    logger.info("Initializing database connections")

    async_engine = build_engine(url, echo=settings.debug)
    async_session_maker = build_session_maker(async_engine)

    logger.info("Database connections initialized")
    return async_session_maker


async def close_database() -> None:
    """Close database connections."""
    global async_engine, async_session_maker

    logger.info("Closing database connections")

    if async_engine:
        await async_engine.dispose()

    async_engine = None
    async_session_maker = None

    logger.info("Database connections closed")


def dialect_insert(session: AsyncSession, table):
    """
    Return an INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL in production, SQLite in tests. Both share the
    on_conflict_do_nothing / on_conflict_do_update API.
    """
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise DatabaseError(f"Upserts are not supported on dialect {name}", {"dialect": name})


class DatabaseManager:
    """Database manager for administrative operations."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        engine = self._engine or async_engine
        if not engine:
            raise DatabaseError("Database not initialized. Call init_database() first.")
        return engine

    async def create_tables(self) -> None:
        """Create all tables in the database."""
        from ledger_engine.models import Base

        logger.info("Creating database tables")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to create tables", {"error": str(e)}) from e
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all tables in the database."""
        from ledger_engine.models import Base

        logger.warning("Dropping all database tables")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to drop tables", {"error": str(e)}) from e
        logger.info("Database tables dropped")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
