"""FastAPI dependency injection for settings, storage, Redis and services."""

from __future__ import annotations

import logging
from typing import Annotated

from access_core.idempotency.guard import IdempotencyGuard, RedisIdempotencyGuard
from access_core.state.database import get_engine, get_session_factory as build_session_factory
from access_core.state.scope import ScopeFactory, sql_scope_factory
from fastapi import Depends, HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portal_api.config import PortalSettings, load_portal_settings
from portal_api.security import Principal
from portal_api.services.billing_service import BillingService
from portal_api.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: PortalSettings | None = None


def get_settings() -> PortalSettings:
    """Return the cached :class:`PortalSettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_portal_settings()
    return _settings_cache


SettingsDep = Annotated[PortalSettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: PortalSettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = build_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


def get_scope_factory() -> ScopeFactory:
    """Return a factory of transactional store + access-log scopes."""
    return sql_scope_factory(get_session_factory())


ScopeFactoryDep = Annotated[ScopeFactory, Depends(get_scope_factory)]

# ---------------------------------------------------------------------------
# Redis (idempotency guard and rate limiter)
# ---------------------------------------------------------------------------

_redis: Redis | None = None


def init_redis(settings: PortalSettings) -> Redis:
    """Create and cache the shared Redis client."""
    global _redis  # noqa: PLW0603
    _redis = Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=2.0)
    return _redis


async def dispose_redis() -> None:
    global _redis  # noqa: PLW0603
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> Redis | None:
    """Return the shared Redis client, or ``None`` before startup."""
    return _redis


def get_idempotency_guard(settings: SettingsDep) -> IdempotencyGuard:
    """Return a Redis-backed guard using the shared client."""
    if _redis is None:
        raise RuntimeError("Redis has not been initialised. Ensure init_redis() is called during application startup.")
    return RedisIdempotencyGuard(
        _redis,
        processing_ttl=settings.idempotency_processing_ttl,
        done_ttl=settings.idempotency_done_ttl,
    )


GuardDep = Annotated[IdempotencyGuard, Depends(get_idempotency_guard)]

# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_billing_service(settings: SettingsDep) -> BillingService:
    return BillingService(settings)


BillingDep = Annotated[BillingService, Depends(get_billing_service)]


def get_webhook_dispatcher(
    settings: SettingsDep,
    billing: BillingDep,
    guard: GuardDep,
    scope_factory: ScopeFactoryDep,
) -> WebhookDispatcher:
    return WebhookDispatcher(
        settings=settings,
        billing=billing,
        guard=guard,
        scope_factory=scope_factory,
    )


DispatcherDep = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]

# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------


def get_principal(request: Request) -> Principal:
    """Return the principal the auth middleware attached to the request."""
    principal: Principal | None = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


PrincipalDep = Annotated[Principal, Depends(get_principal)]


def get_tenant_id(principal: PrincipalDep) -> str:
    """Return the caller's tenant id, or 403 if the session carries none."""
    if not principal.tenant_id:
        raise HTTPException(status_code=403, detail="No tenant associated with this session")
    return principal.tenant_id


TenantDep = Annotated[str, Depends(get_tenant_id)]
