"""Async SQLAlchemy engine for the approvals schema."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from grc_core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def create_async_engine_factory(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Build the asyncpg engine.

    ``lock_timeout`` bounds how long a decision waits on a step row held by
    a concurrent decision before failing instead of queueing forever.
    """
    settings = settings or DatabaseSettings()
    server_settings = {"application_name": settings.application_name}
    if settings.lock_timeout_ms:
        server_settings["lock_timeout"] = str(settings.lock_timeout_ms)

    logger.info(
        "Database engine: pool_size=%d max_overflow=%d lock_timeout_ms=%d",
        settings.pool_size,
        settings.max_overflow,
        settings.lock_timeout_ms,
    )
    return create_async_engine(
        settings.url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_pre_ping=True,
        echo=settings.echo,
        connect_args={"server_settings": server_settings},
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)
