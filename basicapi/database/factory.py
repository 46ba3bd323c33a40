# ==============================================================================
# STORAGE FACTORY - Engine & Session Construction
# ==============================================================================
# Builds the SQLAlchemy async engine for the selected backend. The driver's
# pool serves request traffic; scoped connections serve the schema lifecycle.
# ==============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from sqlalchemy import text
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from basicapi.core.exceptions import ConfigurationError
from basicapi.core.settings import Settings
from basicapi.database.backends import BackendConfiguration, DatabaseBackend

logger = logging.getLogger(__name__)


class StorageContext:
    """
    Storage handle shared by request handlers and the lifecycle manager.

    Creating the engine does not connect; the first connection is opened
    when a session or scoped connection is first used.

    Attributes:
        configuration: Validated backend configuration
        engine: SQLAlchemy async engine

    Example:
        >>> storage = StorageContext(configuration, engine)
        >>> async with storage.session() as session:
        ...     await session.execute(text("SELECT 1"))
    """

    def __init__(
        self,
        configuration: BackendConfiguration,
        engine: AsyncEngine,
    ) -> None:
        self.configuration = configuration
        self.engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def backend(self) -> DatabaseBackend:
        return self.configuration.backend

    # ==========================================================================
    # SCOPES
    # ==========================================================================

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provide transactional session scope.

        Commits on successful exit, rolls back on exception.

        Yields:
            AsyncSession instance
        """
        session: AsyncSession = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """
        Provide a short-lived connection inside a transaction.

        The connection is returned to the pool on every exit path.

        Yields:
            AsyncConnection instance
        """
        async with self.engine.begin() as connection:
            yield connection

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def health_check(self) -> bool:
        """
        Verify database connectivity.

        Returns:
            True if connection is healthy
        """
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"{self.backend.value} health check failed: {e}")
            return False

    async def dispose(self) -> None:
        """Close pooled connections."""
        await self.engine.dispose()
        logger.info(f"{self.backend.value} connection pool disposed")


def engine_options(configuration: BackendConfiguration, settings: Settings) -> Dict[str, Any]:
    """Engine keyword arguments for the selected backend."""
    if configuration.is_embedded:
        return {"connect_args": {"check_same_thread": False}}

    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }


def create_storage(
    configuration: BackendConfiguration,
    settings: Settings,
    **overrides: Any,
) -> StorageContext:
    """
    Create the storage context for a validated backend configuration.

    Args:
        configuration: Output of ``select_backend``
        settings: Pool sizing settings
        **overrides: Extra engine options

    Returns:
        StorageContext

    Raises:
        ConfigurationError: If the backend's async driver is not installed
    """
    options = engine_options(configuration, settings)
    options.update(overrides)

    try:
        engine = create_async_engine(configuration.url, **options)
    except ImportError as e:
        raise ConfigurationError(
            f"Driver for database type {configuration.backend.value} is not installed: {e}",
            setting="Database",
        )
    except InvalidRequestError as e:
        # Raised for drivers without asyncio support
        raise ConfigurationError(
            f"Driver for database type {configuration.backend.value} is not usable: {e}",
            setting="ConnectionString",
        )

    logger.info(f"Created {configuration.backend.value} engine")
    return StorageContext(configuration, engine)
