"""SQLAlchemy 2.x async database setup using asyncpg and pgvector.

The engine is built once per process from settings and handed to the
matcher. It uses ``NullPool``: each request opens its own connection, binds
its session to it, and closes it when the request ends, so nothing is
shared between requests.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .config import DatabaseSettings

logger = logging.getLogger(__name__)


def create_engine(db_settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database.

    Args:
        db_settings: Database configuration

    Returns:
        AsyncEngine without connection pooling
    """
    logger.info(
        "Database connection config",
        extra={
            "url": db_settings.safe_url(),
            "ssl": db_settings.ssl_enabled(),
            "connect_timeout": db_settings.connect_timeout,
        },
    )
    return create_async_engine(
        db_settings.sqlalchemy_url(),
        echo=db_settings.echo,
        poolclass=NullPool,
        connect_args={
            "ssl": db_settings.ssl_enabled(),
            "timeout": db_settings.connect_timeout,
        },
    )


async def open_connection(engine: AsyncEngine) -> AsyncConnection:
    """Open the dedicated connection for one request."""
    connection = engine.connect()
    await connection.start()
    return connection


def create_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for sessions bound to a single connection.

    A session bound to a connection ends its transaction on commit() or
    rollback() but keeps the connection open, so a request can finish its
    reads and later open a write transaction on the same connection.

    Usage:
        session = session_factory(bind=connection)
    """

    return async_sessionmaker(expire_on_commit=False, class_=AsyncSession)
