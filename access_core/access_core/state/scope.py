"""Unit-of-work scopes pairing an entitlement store with an access log.

A scope is entered once per logical change (one webhook event, one manual
grant).  The SQL scope shares one session between store and log, commits on
clean exit and rolls back if the body raises, so a status change and its
audit entry are persisted together or not at all.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from access_core.state.protocols import AccessLog, EntitlementStore
from access_core.state.repository import SqlAccessLog, SqlEntitlementStore


@dataclass(frozen=True)
class AccessScope:
    store: EntitlementStore
    log: AccessLog


ScopeFactory = Callable[[], AbstractAsyncContextManager[AccessScope]]


def sql_scope_factory(session_factory: async_sessionmaker[AsyncSession]) -> ScopeFactory:
    """Return a factory of transactional SQL scopes."""

    @asynccontextmanager
    async def _scope() -> AsyncIterator[AccessScope]:
        session = session_factory()
        try:
            yield AccessScope(store=SqlEntitlementStore(session), log=SqlAccessLog(session))
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return _scope
