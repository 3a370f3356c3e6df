"""Storage protocol definitions for tenant access state.

Consumer code (the webhook dispatcher and the portal routers) depends on
these protocols, never on a concrete implementation.  The SQL repositories
in :mod:`access_core.state.repository` serve production; the in-memory
versions in :mod:`access_core.testing.memory` serve tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from access_core.models.access import (
    AccessAction,
    AccessChangeLogEntry,
    AccessSource,
    AccessStatus,
    TenantAccessRecord,
)


@runtime_checkable
class EntitlementStore(Protocol):
    """Keyed store of :class:`TenantAccessRecord` values."""

    async def get(self, tenant_id: str) -> TenantAccessRecord | None:
        """Return the record for *tenant_id*, or ``None``."""
        ...

    async def get_by_billing_customer(self, customer_id: str) -> TenantAccessRecord | None:
        """Return the record bound to Stripe customer *customer_id*, or ``None``."""
        ...

    async def activate(
        self,
        tenant_id: str,
        customer_id: str,
        subscription_id: str | None,
        active_until: datetime,
        seats: int,
        plan_id: str | None = None,
    ) -> TenantAccessRecord:
        """Create or update the record as a paid ``ACTIVE`` subscription.

        Binds *customer_id* to the tenant, clears any trial and sets the
        source to ``STRIPE``.

        Raises
        ------
        BillingCustomerConflictError
            If *customer_id* is bound to another tenant, or the tenant is
            already bound to a different customer.
        """
        ...

    async def update_status(
        self,
        tenant_id: str,
        status: AccessStatus,
        active_until: datetime | None = None,
        seats: int | None = None,
        *,
        source: AccessSource = AccessSource.STRIPE,
    ) -> TenantAccessRecord | None:
        """Set the status (and optionally period end and seats).

        Returns ``None`` for an unknown tenant; this is not an error.
        """
        ...

    async def grant_trial(
        self,
        tenant_id: str,
        days: int,
        seat_limit: int,
    ) -> TenantAccessRecord:
        """Create or update the record as a manual ``TRIALING`` grant."""
        ...


@runtime_checkable
class AccessLog(Protocol):
    """Append-only log of access changes."""

    async def append(
        self,
        *,
        tenant_id: str,
        action: AccessAction,
        new_status: AccessStatus,
        source: AccessSource,
        old_status: AccessStatus | None = None,
        actor_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AccessChangeLogEntry:
        """Record one access change and return the stored entry."""
        ...

    async def recent(
        self,
        limit: int = 50,
        *,
        tenant_id: str | None = None,
    ) -> list[AccessChangeLogEntry]:
        """Return up to *limit* entries, newest first."""
        ...
