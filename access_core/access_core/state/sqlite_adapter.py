"""SQLite (aiosqlite) backend for local runs and tests.

Uses the same table definitions as PostgreSQL.  Tables are created directly
instead of through Alembic, and there is no connection pool to tune.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def engine_from_url(database_url: str) -> AsyncEngine:
    """``sqlite+aiosqlite:///path/to/db`` -> engine; no path means in-memory."""
    _, _, path = database_url.partition("///")
    return get_local_engine(path or MEMORY)


def get_local_engine(db_path: Path | str = ".portal/access.db") -> AsyncEngine:
    """Return an engine for the database file at *db_path* (parents created) or ``:memory:``."""
    if str(db_path) == MEMORY:
        url = f"sqlite+aiosqlite:///{MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    logger.info("SQLite engine ready: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create any missing tables; safe on every startup."""
    from access_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Access tables ensured")
