"""
Database Connection Manager
---------------------------
Process-wide SQLAlchemy async engine for the PostgreSQL credential store.

A session handed out by ``get_session`` is one transaction: it commits when
the ``async with`` block exits cleanly and rolls back on any exception,
task cancellation included.
"""

from typing import Any, Dict, Optional, AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy import text
from loguru import logger

from lawcase_auth.core.config_manager import settings


def _default_engine_config() -> Dict[str, Any]:
    return {
        "url": settings.database_url,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
    }


class DatabaseManager:
    """
    Singleton owner of the async engine and its sessionmaker.

    Refresh-token rotation and backup-code consumption each run their
    statements inside a single ``get_session()`` block, which is what makes
    them atomic.
    """

    _instance = None
    _engine = None
    _sessionmaker = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self._sessionmaker is not None

    async def initialize(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Create the engine and sessionmaker. A second call is a no-op.

        Args:
            config: ``url``, ``pool_size`` and ``max_overflow`` overrides;
                defaults come from application settings.
        """
        if self._engine is not None:
            logger.warning("Database engine already initialized")
            return

        engine_config = config or _default_engine_config()
        logger.info(
            f"Connecting credential store to "
            f"{settings.database_host}:{settings.database_port}/{settings.database_name}"
        )

        try:
            self._engine = create_async_engine(
                engine_config["url"],
                pool_size=engine_config.get("pool_size", 5),
                max_overflow=engine_config.get("max_overflow", 10),
                pool_pre_ping=True,
                pool_recycle=3600,
                pool_timeout=30,
                echo=False,
            )
            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        except Exception as e:
            logger.error(f"Could not create database engine: {e}")
            raise

        logger.info("Database engine ready")

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("Database engine disposed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Yield a session scoped to one transaction.

        Raises:
            RuntimeError: If ``initialize()`` has not run.
        """
        if not self._sessionmaker:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        session = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except BaseException as e:
            # CancelledError is not an Exception subclass
            await session.rollback()
            logger.warning(f"Transaction rolled back: {e!r}")
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Round-trip ``SELECT 1`` for the dependency health check."""
        async with self.get_session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1


db_manager = DatabaseManager()


async def initialize_db(config=None):
    await db_manager.initialize(config)


async def close_db():
    await db_manager.close()


def get_db_manager():
    return db_manager
