"""Engine and session construction for the entitlement store.

``postgresql+asyncpg://`` URLs get a small pre-pinged pool with server-side
statement and lock timeouts; ``sqlite+aiosqlite://`` URLs are delegated to
:mod:`access_core.state.sqlite_adapter`.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

# Entitlement writes are single-row upserts; anything slower is a stuck lock.
_SERVER_SETTINGS = {"statement_timeout": "15000", "lock_timeout": "5000"}


def get_engine(database_url: str, *, pool_size: int = 5, max_overflow: int = 10) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        from access_core.state.sqlite_adapter import engine_from_url

        return engine_from_url(database_url)

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={"server_settings": dict(_SERVER_SETTINGS)},
    )
    logger.info("PostgreSQL engine ready (pool_size=%d, max_overflow=%d)", pool_size, max_overflow)
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded rows usable after commit; scopes read back what they wrote."""
    return async_sessionmaker(engine, expire_on_commit=False)


_SYNC_DRIVERS = (
    ("postgresql+asyncpg://", "postgresql+psycopg://"),
    ("postgresql://", "postgresql+psycopg://"),
    ("sqlite+aiosqlite://", "sqlite://"),
)


def sync_migration_url(database_url: str) -> str:
    """Rewrite an application URL for Alembic, which needs a sync driver.

    asyncpg's ``ssl=require`` query flag becomes psycopg's ``sslmode=require``.
    """
    url = database_url
    for async_prefix, sync_prefix in _SYNC_DRIVERS:
        if url.startswith(async_prefix):
            url = sync_prefix + url[len(async_prefix) :]
            break
    return url.replace("?ssl=require", "?sslmode=require").replace("&ssl=require", "&sslmode=require")
