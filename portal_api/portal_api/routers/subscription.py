"""Tenant-facing subscription status."""

from __future__ import annotations

import logging
from typing import Any

from access_core.models.access import AccessSource, TenantAccessRecord
from access_core.status_mapper import map_billing_status
from fastapi import APIRouter

from portal_api.dependencies import BillingDep, PrincipalDep, ScopeFactoryDep
from portal_api.services.access_service import subscription_snapshot
from portal_api.services.billing_service import (
    subscription_period_end,
    subscription_price_id,
    subscription_seats,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])


def _record_from_live_subscription(tenant_id: str, subscription: dict[str, Any]) -> TenantAccessRecord:
    return TenantAccessRecord(
        tenant_id=tenant_id,
        billing_subscription_id=subscription.get("id"),
        status=map_billing_status(subscription.get("status")),
        source=AccessSource.STRIPE,
        active_until=subscription_period_end(subscription),
        seat_limit=subscription_seats(subscription) or 1,
        plan_id=subscription_price_id(subscription),
    )


@router.get("/status")
async def subscription_status(
    principal: PrincipalDep,
    scope_factory: ScopeFactoryDep,
    billing: BillingDep,
) -> dict[str, Any]:
    """Return the caller's tenant subscription snapshot.

    Without a local access record the caller's Stripe customer is looked up
    by e-mail.  A missing subscription is reported as ``null``, never as an
    error.
    """
    if principal.tenant_id:
        async with scope_factory() as scope:
            record = await scope.store.get(principal.tenant_id)
        if record is not None:
            return {"subscription": subscription_snapshot(record)}

    if not principal.email:
        return {"subscription": None}

    try:
        live = await billing.find_live_subscription(principal.email)
    except Exception:
        logger.warning("Live subscription lookup failed for %s", principal.email, exc_info=True)
        return {"subscription": None}

    if live is None:
        return {"subscription": None}

    record = _record_from_live_subscription(principal.tenant_id or principal.sub, live)
    return {"subscription": subscription_snapshot(record)}
