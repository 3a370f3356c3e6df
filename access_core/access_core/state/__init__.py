"""State persistence layer using PostgreSQL (SQLite for local dev)."""

from access_core.state.database import get_engine, get_session_factory
from access_core.state.protocols import AccessLog, EntitlementStore
from access_core.state.repository import SqlAccessLog, SqlEntitlementStore
from access_core.state.scope import AccessScope, ScopeFactory, sql_scope_factory

__all__ = [
    "AccessLog",
    "AccessScope",
    "EntitlementStore",
    "ScopeFactory",
    "SqlAccessLog",
    "SqlEntitlementStore",
    "get_engine",
    "get_session_factory",
    "sql_scope_factory",
]
