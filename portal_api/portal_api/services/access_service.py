"""Operator and tenant-facing access operations.

Manual trial grants write through the same entitlement store and access
log as the webhook path, so the audit trail is complete regardless of who
changed a tenant's status.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from access_core.entitlement import compute_entitlement
from access_core.models.access import (
    AccessAction,
    AccessChangeLogEntry,
    AccessSource,
    AccessStatus,
    TenantAccessRecord,
)
from access_core.state.scope import AccessScope

logger = logging.getLogger(__name__)

MAX_TRIAL_DAYS = 90
MAX_TRIAL_SEATS = 100


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def subscription_snapshot(record: TenantAccessRecord, *, now: datetime | None = None) -> dict[str, Any]:
    """Build the tenant-facing subscription summary for *record*."""
    entitlement = compute_entitlement(record, now=now)
    plan = record.plan_id
    if plan is None and record.status == AccessStatus.TRIALING:
        plan = "trial"
    return {
        "status": record.status.value.lower(),
        "source": record.source.value.lower(),
        "plan": plan,
        "mode": entitlement.mode.value if entitlement.entitled and entitlement.mode else None,
        "entitled": entitlement.entitled,
        "reason": entitlement.reason.value if entitlement.reason else None,
        "seats": record.seat_limit,
        "seatsUsed": record.seat_used,
        "currentPeriodEnd": _iso(record.trial_ends_at or record.active_until),
        "trialEndsAt": _iso(record.trial_ends_at),
        "activeUntil": _iso(record.active_until),
    }


def record_payload(record: TenantAccessRecord) -> dict[str, Any]:
    """Serialise a record with camelCase keys for API responses."""
    return {
        "tenantId": record.tenant_id,
        "status": record.status.value,
        "source": record.source.value,
        "seatLimit": record.seat_limit,
        "seatsUsed": record.seat_used,
        "trialEndsAt": _iso(record.trial_ends_at),
        "activeUntil": _iso(record.active_until),
        "billingCustomerId": record.billing_customer_id,
        "billingSubscriptionId": record.billing_subscription_id,
        "planId": record.plan_id,
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


def entry_payload(entry: AccessChangeLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat(),
        "tenantId": entry.tenant_id,
        "action": entry.action.value,
        "oldStatus": entry.old_status.value if entry.old_status else None,
        "newStatus": entry.new_status.value,
        "source": entry.source.value,
        "actorEmail": entry.actor_email,
        "metadata": entry.metadata,
    }


class AccessService:
    """Access operations bound to one store + log scope."""

    def __init__(self, scope: AccessScope) -> None:
        self._scope = scope

    async def grant_trial(
        self,
        tenant_id: str,
        *,
        days: int,
        seat_limit: int,
        actor_email: str,
    ) -> TenantAccessRecord:
        """Grant a manual trial and record it with the tenant's true prior status."""
        if not 1 <= days <= MAX_TRIAL_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_TRIAL_DAYS}")
        if not 1 <= seat_limit <= MAX_TRIAL_SEATS:
            raise ValueError(f"seat_limit must be between 1 and {MAX_TRIAL_SEATS}")

        prior = await self._scope.store.get(tenant_id)
        old_status = prior.status if prior is not None else None

        record = await self._scope.store.grant_trial(tenant_id, days, seat_limit)
        await self._scope.log.append(
            tenant_id=tenant_id,
            action=AccessAction.GRANT_TRIAL,
            old_status=old_status,
            new_status=record.status,
            source=AccessSource.MANUAL,
            actor_email=actor_email,
            metadata={"days": days, "seatLimit": seat_limit},
        )
        logger.info("Operator %s granted %d-day trial to tenant %s", actor_email, days, tenant_id)
        return record

    async def recent_changes(
        self,
        limit: int = 50,
        *,
        tenant_id: str | None = None,
    ) -> list[AccessChangeLogEntry]:
        return await self._scope.log.recent(limit, tenant_id=tenant_id)
