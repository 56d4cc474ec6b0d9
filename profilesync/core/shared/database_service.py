# profilesync/core/shared/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections,
sessions, and health checks. PostgreSQL is the production backend; SQLite
(aiosqlite) is accepted for local development and tests.

Usage:
    from profilesync.core.shared.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(select(ProfileLink).where(ProfileLink.id == link_id))
        link = result.scalar_one_or_none()

    # Raw connection (advisory locks need one held across statements)
    conn = await database_service.engine.connect()

PostgreSQL Configuration:
    Connection pooling is configured via settings:
    - DB_POOL_SIZE: Number of connections to maintain (default: 20)
    - DB_MAX_OVERFLOW: Extra connections allowed during peak load (default: 40)
    - DB_POOL_RECYCLE: Recycle connections after N seconds (default: 3600)
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from profilesync.config import settings
from profilesync.core.database.base import Base


def _is_celery_worker() -> bool:
    """Check if we're running inside a Celery worker process."""
    return (
        os.getenv("CELERY_WORKER") == "1" or
        "celery" in os.getenv("_", "").lower() or
        os.getenv("FORKED_BY_MULTIPROCESSING") == "1"
    )


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    Attributes:
        _engine: Async SQLAlchemy engine
        _session_factory: Async session factory
        _logger: Logger instance

    Methods:
        get_session(): Get async database session (context manager)
        init_db(): Initialize database (create all tables)
        health_check(): Check database connectivity
        close(): Close database engine and connections
    """

    def __init__(self, database_url: Optional[str] = None):
        self._logger = logging.getLogger("profilesync.database")
        self._database_url = database_url or settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialize_engine()

    def _initialize_engine(self) -> None:
        """
        Initialize database engine based on the configured URL.

        SQLite Configuration:
            - Uses aiosqlite async driver
            - Creates data directory if needed

        PostgreSQL Configuration:
            - Uses asyncpg async driver
            - NullPool inside Celery workers (fresh loop per task)
            - Connection pooling with pre-ping and recycle elsewhere
        """
        database_url = self._database_url
        safe_url = database_url.split("@")[-1].split("?")[0]
        self._logger.info(f"Initializing database: {safe_url}")

        if database_url.startswith("sqlite"):
            if ":///" in database_url:
                db_path = database_url.split("///")[1].split("?")[0]
                db_dir = os.path.dirname(db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self._logger.info(f"Created database directory: {db_dir}")

            self._engine = create_async_engine(
                database_url,
                connect_args={"check_same_thread": False},
                echo=settings.debug,
            )
            self._logger.info("Using SQLite database (development mode)")

        elif _is_celery_worker():
            # Each Celery task runs its own asyncio.run(); pooled connections
            # would be bound to a closed loop.
            self._engine = create_async_engine(
                database_url,
                poolclass=NullPool,
                echo=settings.debug,
                connect_args={"server_settings": {"application_name": "profilesync-worker"}},
            )
            self._logger.info("PostgreSQL configured with NullPool for Celery worker")

        else:
            self._engine = create_async_engine(
                database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_pre_ping=True,
                pool_recycle=settings.db_pool_recycle,
                echo=settings.debug,
                connect_args={"server_settings": {"application_name": "profilesync"}},
            )
            self._logger.info(
                f"PostgreSQL connection pool: size={settings.db_pool_size}, "
                f"max_overflow={settings.db_max_overflow}, recycle={settings.db_pool_recycle}s"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        if not self._engine:
            raise RuntimeError("Database engine not initialized")
        return self._engine

    @property
    def database_url(self) -> str:
        return self._database_url

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Automatically handles commit on success and rollback on error.

        Yields:
            AsyncSession: Async database session

        Raises:
            RuntimeError: If database is not initialized
            Exception: Any database errors (triggers rollback)
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """
        Create all tables defined in SQLAlchemy models if they don't exist.

        This is for development and tests. Production schema changes go
        through Alembic.
        """
        self._logger.info("Creating database tables...")

        async with self.engine.begin() as conn:
            # Import models so they're registered with Base
            from profilesync.core.database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        self._logger.info("Database tables created successfully")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with health status:
                {
                    "status": "healthy" | "unhealthy",
                    "connected": True | False,
                    "database_type": "postgresql" | "sqlite",
                    "error": "error message" (if unhealthy),
                }
        """
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))

            return {
                "status": "healthy",
                "connected": True,
                "database_type": self.dialect_name,
            }
        except Exception as e:
            self._logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "connected": False,
                "database_type": self.dialect_name,
                "error": str(e),
            }

    async def close(self) -> None:
        """Close database engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._logger.info("Database connections closed")

    def __repr__(self) -> str:
        return f"<DatabaseService(type={self.dialect_name})>"


# Global singleton instance
database_service = DatabaseService()
