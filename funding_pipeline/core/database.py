"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import AsyncGenerator, Optional, Sequence
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from funding_pipeline.models.base import BaseModel
from .config import Settings, DatabaseConfig
from .exceptions import DatabaseError
from .logging import get_logger

logger = get_logger(__name__)


class Database:
    """
    Owns the async engine and session factory for one process.

    Usage:
        db = Database(settings)
        await db.connect()
        async with db.session() as session:
            ...
        await db.close()
    """

    def __init__(self, settings: Settings, url: Optional[str] = None):
        self.settings = settings
        self.url = DatabaseConfig.get_database_url(url or settings.database_url)
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self.engine is not None:
            return

        logger.info("Initializing database connections")

        self.engine = create_async_engine(
            self.url,
            **DatabaseConfig.get_engine_config(self.settings, self.url),
            echo=self.settings.debug
        )
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info("Database connections initialized")

    async def close(self) -> None:
        """Dispose the engine."""
        if self.engine is None:
            return

        logger.info("Closing database connections")
        await self.engine.dispose()
        self.engine = None
        self.session_maker = None
        logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self, existing: Optional[AsyncSession] = None) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session that commits on success and rolls back on error.

        When ``existing`` is given the caller owns the transaction: the same
        session is yielded and nothing is committed here.
        """
        if existing is not None:
            yield existing
            return

        if self.session_maker is None:
            raise DatabaseError("Database not initialized. Call connect() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables in the database."""
        if self.engine is None:
            raise DatabaseError("Database not initialized")

        logger.info("Creating database tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(BaseModel.metadata.create_all)
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all tables in the database."""
        if self.engine is None:
            raise DatabaseError("Database not initialized")

        logger.warning("Dropping all database tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(BaseModel.metadata.drop_all)
        logger.info("Database tables dropped")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False


def insert_ignore(session: AsyncSession, model, values: dict, conflict_columns: Sequence[str]):
    """
    INSERT ... ON CONFLICT DO NOTHING RETURNING id for the session's dialect.

    Executing the statement yields the new primary key, or no row when the
    conflict target already exists.
    """
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise DatabaseError(f"Unsupported database dialect: {dialect}")

    return (
        stmt.values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model.id)
    )
