"""Shared fixtures for portal API tests.

Provides test settings, in-memory storage and idempotency doubles, a mock
BillingService, a FastAPI app wired to them through dependency overrides,
and Stripe event factories used across test modules.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set the session secret BEFORE importing application modules so the
# module-level app builds its TokenManager with a deterministic secret.
_TEST_SESSION_SECRET = "test-session-secret-for-portal-tests"
os.environ.setdefault("PORTAL_SESSION_SECRET", _TEST_SESSION_SECRET)

from access_core.testing import (
    InMemoryAccessLog,
    InMemoryEntitlementStore,
    InMemoryIdempotencyGuard,
    memory_scope_factory,
)
from portal_api.config import PortalSettings
from portal_api.dependencies import (
    get_billing_service,
    get_idempotency_guard,
    get_scope_factory,
    get_settings,
)
from portal_api.main import create_app
from portal_api.security import TokenManager
from portal_api.services.billing_service import BillingService
from portal_api.services.webhook_dispatcher import WebhookDispatcher

OPERATOR_EMAIL = "ops@clinic.example"
PERIOD_END_TS = 1893456000  # 2030-01-01T00:00:00Z
PERIOD_END = datetime.fromtimestamp(PERIOD_END_TS, tz=UTC)

# ---------------------------------------------------------------------------
# Settings and tokens
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> PortalSettings:
    """Return settings suitable for testing; keyword arguments override."""
    values: dict[str, Any] = {
        "host": "0.0.0.0",
        "port": 8000,
        "debug": True,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "platform_env": "dev",
        "cors_origins": ["http://localhost:3000"],
        "session_secret": _TEST_SESSION_SECRET,
        "stripe_secret_key": "sk_test_xxx",
        "stripe_webhook_secret": "whsec_test_xxx",
        "stripe_price_id_basic": "price_basic",
        "stripe_price_id_seat": "price_seat",
        "operator_emails": [OPERATOR_EMAIL],
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return PortalSettings(**values)


def _make_token(
    sub: str = "user-1",
    email: str | None = "doctor@clinic.example",
    tenant_id: str | None = "clinic-1",
    role: str | None = None,
    name: str | None = "Dr. Test",
) -> str:
    """Issue a session token signed with the test secret."""
    settings = make_settings()
    manager = TokenManager(settings.session_secret, issuer=settings.session_issuer)
    return manager.issue(sub=sub, email=email, tenant_id=tenant_id, role=role, name=name)


def auth_headers(**claims: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {_make_token(**claims)}"}


def operator_headers() -> dict[str, str]:
    return auth_headers(sub="operator-1", email=OPERATOR_EMAIL, tenant_id="ops-tenant", name="Operator")


# ---------------------------------------------------------------------------
# Stripe payload factories
# ---------------------------------------------------------------------------


def stripe_subscription(
    subscription_id: str = "sub_1",
    *,
    customer: str = "cus_1",
    status: str = "active",
    quantity: int = 1,
    price_id: str = "price_basic",
    period_end: int | None = PERIOD_END_TS,
    period_on_items: bool = False,
) -> dict[str, Any]:
    """Build a subscription object as Stripe returns it."""
    item: dict[str, Any] = {"id": "si_1", "quantity": quantity, "price": {"id": price_id}}
    subscription: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"object": "list", "data": [item]},
    }
    if period_end is not None:
        if period_on_items:
            item["current_period_end"] = period_end
        else:
            subscription["current_period_end"] = period_end
    return subscription


def stripe_event(event_id: str, event_type: str, data_object: dict[str, Any]) -> dict[str, Any]:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": data_object}}


def checkout_completed_event(
    event_id: str = "evt_checkout_1",
    *,
    tenant_id: str | None = "clinic-1",
    customer: str | None = "cus_1",
    subscription: str | None = "sub_1",
    use_client_reference: bool = False,
    mode: str = "subscription",
) -> dict[str, Any]:
    session: dict[str, Any] = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "customer": customer,
        "subscription": subscription,
        "metadata": {},
    }
    if tenant_id is not None:
        if use_client_reference:
            session["client_reference_id"] = tenant_id
        else:
            session["metadata"] = {"tenantId": tenant_id}
    return stripe_event(event_id, "checkout.session.completed", session)


def invoice_event(
    event_id: str,
    event_type: str,
    *,
    customer: str = "cus_1",
    subscription: str | None = "sub_1",
    nested_subscription: bool = False,
) -> dict[str, Any]:
    invoice: dict[str, Any] = {"id": "in_1", "object": "invoice", "customer": customer}
    if subscription is not None:
        if nested_subscription:
            invoice["parent"] = {"subscription_details": {"subscription": subscription}}
        else:
            invoice["subscription"] = subscription
    return stripe_event(event_id, event_type, invoice)


def encode(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> PortalSettings:
    return make_settings()


@pytest.fixture()
def store() -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore()


@pytest.fixture()
def access_log() -> InMemoryAccessLog:
    return InMemoryAccessLog()


@pytest.fixture()
def guard() -> InMemoryIdempotencyGuard:
    return InMemoryIdempotencyGuard(processing_ttl=300, done_ttl=30 * 24 * 3600)


@pytest.fixture()
def mock_billing() -> MagicMock:
    """Return a mock BillingService.

    ``construct_event`` parses the payload as the event itself (signature
    accepted); ``retrieve_subscription`` returns an active one-seat
    subscription.  Tests override individual behaviours as needed.
    """
    billing = MagicMock(spec=BillingService)
    billing.construct_event = MagicMock(side_effect=lambda payload, sig_header: json.loads(payload))
    billing.retrieve_subscription = AsyncMock(return_value=stripe_subscription())
    billing.find_live_subscription = AsyncMock(return_value=None)
    billing.create_checkout_session = AsyncMock(return_value="https://checkout.stripe.com/c/pay/cs_test_1")
    return billing


@pytest.fixture()
def dispatcher(
    test_settings: PortalSettings,
    mock_billing: MagicMock,
    guard: InMemoryIdempotencyGuard,
    store: InMemoryEntitlementStore,
    access_log: InMemoryAccessLog,
) -> WebhookDispatcher:
    return WebhookDispatcher(
        settings=test_settings,
        billing=mock_billing,
        guard=guard,
        scope_factory=memory_scope_factory(store, access_log),
    )


# ---------------------------------------------------------------------------
# FastAPI app (async httpx)
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(
    test_settings: PortalSettings,
    store: InMemoryEntitlementStore,
    access_log: InMemoryAccessLog,
    guard: InMemoryIdempotencyGuard,
    mock_billing: MagicMock,
):
    """Create a FastAPI app whose storage, guard and Stripe are test doubles."""
    application = create_app(test_settings)

    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_scope_factory] = lambda: memory_scope_factory(store, access_log)
    application.dependency_overrides[get_idempotency_guard] = lambda: guard
    application.dependency_overrides[get_billing_service] = lambda: mock_billing
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app (no auth header)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
