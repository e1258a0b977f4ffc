"""Database engine layer for the DeFi portfolio worker.

Provides the async engine (asyncpg) and session factory used by the
repositories. Engines are built explicitly from settings rather than at
import time so the worker, scripts and tests can each own their engine.
Session factories are configured with autoflush=False and
expire_on_commit=False for explicit transaction control.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings, settings as default_settings


# ---------------------------------------------------------------------------
# Async engine (asyncpg)
# ---------------------------------------------------------------------------
def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    """Build the async engine for the configured PostgreSQL database.

    Args:
        settings: Settings to read connection and pool parameters from.
            Defaults to the module-level singleton.

    Returns:
        A new AsyncEngine. The caller owns it and must ``await engine.dispose()``.
    """
    settings = settings or default_settings
    return create_async_engine(
        settings.async_database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        echo=settings.debug,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to *engine*."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
