"""Async database engine, session dependency and client.

The allocation workflow relies on single-statement guarded updates for its
concurrency guarantees, so everything here is plain engine/session plumbing.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from portal.core.config import settings
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    # Disable prepared statement cache for PgBouncer compatibility
    connect_args={"statement_cache_size": 0},
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting async database session.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


class DatabaseClient:
    """PostgreSQL database client with connection and schema management."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def connect(self) -> bool:
        """Test database connection."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            LOGGER.info("Database connection successful")
            return True
        except Exception:
            LOGGER.error("Database connection failed", exc_info=True)
            raise

    async def disconnect(self) -> None:
        """Dispose of the engine's connection pool."""
        try:
            await self.engine.dispose()
            LOGGER.info("Database connection closed")
        except Exception as e:
            LOGGER.error("Error closing database connection", exc_info=True, extra={"error": str(e)})

    async def create_tables(self) -> None:
        """Create all tables that don't exist yet. Existing tables are left untouched."""
        # Register the models on Base.metadata before create_all
        import portal.database.models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            LOGGER.info("Database tables created/verified successfully")
        except Exception as e:
            LOGGER.error("Failed to create database tables", exc_info=True, extra={"error": str(e)})
            raise

    async def health_check(self) -> dict:
        """Check database health."""
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))
            return {
                "status": "healthy",
                "connected": True,
                "database": "postgresql",
                "latency_test": "passed" if val == 1 else "failed",
            }
        except Exception as e:
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }


db_client = DatabaseClient(engine)


async def init_database(auto_migrate: bool = True) -> None:
    """Initialize database connection and optionally create missing tables.

    Args:
        auto_migrate: Whether to run create_all on startup
    """
    try:
        LOGGER.info("Initializing database connection...")
        await db_client.connect()
        if auto_migrate:
            await db_client.create_tables()
        LOGGER.info("Database initialization completed")
    except Exception as e:
        LOGGER.error("Database initialization failed", exc_info=True, extra={"error": str(e)})
        raise


async def close_database() -> None:
    """Close database connection."""
    try:
        LOGGER.info("Closing database connection...")
        await db_client.disconnect()
    except Exception as e:
        LOGGER.error("Error closing database", exc_info=True, extra={"error": str(e)})
