"""Tenant access records and access-change audit entries.

A ``TenantAccessRecord`` is the single source of truth for whether a clinic
tenant may use the gated parts of the product.  Every change to a record's
``status`` is paired with an ``AccessChangeLogEntry`` so the history of a
tenant's entitlement can be reconstructed from the audit log alone.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AccessStatus(str, Enum):
    """Internal access-status vocabulary."""

    INACTIVE = "INACTIVE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"


class AccessSource(str, Enum):
    """Origin of an access change."""

    MANUAL = "MANUAL"
    STRIPE = "STRIPE"


class AccessAction(str, Enum):
    """Kinds of access change recorded in the audit log."""

    GRANT_TRIAL = "GRANT_TRIAL"
    ACTIVATE = "ACTIVATE"
    UPDATE_STATUS = "UPDATE_STATUS"
    CANCEL = "CANCEL"


class TenantAccessRecord(BaseModel):
    """Subscription and access state for one tenant."""

    tenant_id: str = Field(
        ...,
        min_length=1,
        description="Opaque tenant identifier (immutable primary key).",
    )
    billing_customer_id: str | None = Field(
        default=None,
        description="Stripe customer id, bound on first checkout and never reassigned.",
    )
    billing_subscription_id: str | None = Field(
        default=None,
        description="Stripe subscription id of the current subscription.",
    )
    status: AccessStatus = Field(
        default=AccessStatus.INACTIVE,
        description="Current access status.",
    )
    source: AccessSource = Field(
        default=AccessSource.MANUAL,
        description="Which path last set the status.",
    )
    trial_ends_at: datetime | None = Field(
        default=None,
        description="End of a manually granted trial.",
    )
    active_until: datetime | None = Field(
        default=None,
        description="End of the current paid billing period.",
    )
    seat_limit: int = Field(
        default=1,
        ge=1,
        description="Number of seats the tenant is entitled to.",
    )
    seat_used: int = Field(
        default=0,
        ge=0,
        description="Seats in use; may exceed seat_limit, not enforced at write time.",
    )
    plan_id: str | None = Field(
        default=None,
        description="Stripe price id of the subscribed plan.",
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AccessChangeLogEntry(BaseModel):
    """One append-only audit entry describing an access change."""

    id: str
    timestamp: datetime
    tenant_id: str
    action: AccessAction
    old_status: AccessStatus | None = None
    new_status: AccessStatus
    source: AccessSource
    actor_email: str | None = Field(
        default=None,
        description="Operator e-mail; present only for MANUAL changes.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
