"""
Database engine and session management.

The DatabaseManager is created by the application container from
configuration; it is not a process-wide singleton.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from .config.models import DatabaseConfig
from .exceptions import DatabaseError, ErrorContext
from .metadata import metadata
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def normalize_async_url(database_url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg:// for async support."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class DatabaseManager:
    """
    Owns the async engine and session maker.

    Initialization is lazy so building the container does not open connections.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self.database_url = normalize_async_url(config.url)
        self.engine: AsyncEngine | None = None
        self.session_maker: async_sessionmaker[AsyncSession] | None = None

    def _initialize(self) -> None:
        pool_kwargs: dict[str, Any] = {}
        if "test" in self.database_url:
            pool_kwargs["poolclass"] = NullPool
        else:
            pool_kwargs.update(
                {
                    "pool_size": self._config.pool_size,
                    "max_overflow": self._config.max_overflow,
                    "pool_timeout": self._config.pool_timeout,
                }
            )

        self.engine = create_async_engine(self.database_url, echo=False, pool_pre_ping=True, **pool_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created", pool_type="NullPool" if "poolclass" in pool_kwargs else "QueuePool")

    def get_engine(self) -> AsyncEngine:
        if self.engine is None:
            self._initialize()
        assert self.engine is not None, "Database engine not initialized"
        return self.engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self.session_maker is None:
            self._initialize()
        assert self.session_maker is not None, "Session maker not initialized"
        return self.session_maker

    async def create_tables(self) -> None:
        """Create any missing tables. Used for local development databases."""
        # Models must be imported so their tables are registered on the metadata
        from . import models  # noqa: F401  # pylint: disable=import-outside-toplevel,unused-import

        try:
            async with self.get_engine().begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            context = ErrorContext(metadata={"operation": "create_tables"})
            raise DatabaseError(f"Failed to create tables: {e}", context=context, operation="create_tables") from e
        logger.info("Database tables verified")

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.session_maker = None
