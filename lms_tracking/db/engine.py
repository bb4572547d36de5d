"""PostgreSQL access for the tracking tables.

With DATABASE_URL set this module exposes an asyncpg-backed engine and
the session factory that services/stores.py opens one session from per
unit of work. Without it both are None and the stores are in-memory.

Statements are capped by asyncpg's ``command_timeout`` and pool checkout
by ``pool_timeout``, both taken from STORE_TIMEOUT_SECONDS.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lms_tracking.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _build_engine(url: str) -> AsyncEngine:
    timeout = SETTINGS.store_timeout_seconds
    return create_async_engine(
        url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        pool_timeout=timeout,
        connect_args={"command_timeout": timeout},
    )


engine: AsyncEngine | None = (
    _build_engine(SETTINGS.database_url) if SETTINGS.database_url else None
)
async_session_factory: async_sessionmaker[AsyncSession] | None = (
    async_sessionmaker(engine, expire_on_commit=False) if engine is not None else None
)


@asynccontextmanager
async def lifespan_db():
    """Dispose of the connection pool when the app shuts down."""
    if engine is None:
        logger.info("DATABASE_URL unset, tracking stores are in-memory")
        yield
        return

    logger.info(
        "Tracking database: %s", engine.url.render_as_string(hide_password=True)
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Tracking database pool disposed")
