"""Entitlement gating derived from a tenant access record.

:func:`compute_entitlement` is the one gate every feature check should go
through.  It fails closed: a missing record, an expired trial, or an
``ACTIVE`` record without a future period end all deny access.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel

from access_core.models.access import AccessStatus, TenantAccessRecord


class EntitlementMode(str, Enum):
    """How an entitled tenant is entitled."""

    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"


class DenialReason(str, Enum):
    """Why a tenant is not entitled."""

    NO_ACCESS = "NO_ACCESS"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    ACTIVE_BUT_EXPIRED = "ACTIVE_BUT_EXPIRED"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INACTIVE = "INACTIVE"


class EntitlementResult(BaseModel):
    """Outcome of an entitlement check."""

    entitled: bool
    mode: EntitlementMode | None = None
    reason: DenialReason | None = None
    until: datetime | None = None
    seats: int | None = None


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def compute_entitlement(
    record: TenantAccessRecord | None,
    *,
    now: datetime | None = None,
) -> EntitlementResult:
    """Return whether *record* currently entitles its tenant to gated features."""
    if record is None:
        return EntitlementResult(entitled=False, reason=DenialReason.NO_ACCESS)

    current = now or datetime.now(UTC)

    if record.status == AccessStatus.TRIALING:
        if record.trial_ends_at is not None and _as_aware(record.trial_ends_at) > current:
            return EntitlementResult(
                entitled=True,
                mode=EntitlementMode.TRIAL,
                until=record.trial_ends_at,
                seats=record.seat_limit,
            )
        return EntitlementResult(entitled=False, reason=DenialReason.TRIAL_EXPIRED)

    if record.status == AccessStatus.ACTIVE:
        if record.active_until is not None and _as_aware(record.active_until) > current:
            return EntitlementResult(
                entitled=True,
                mode=EntitlementMode.ACTIVE,
                until=record.active_until,
                seats=record.seat_limit,
            )
        return EntitlementResult(entitled=False, reason=DenialReason.ACTIVE_BUT_EXPIRED)

    if record.status == AccessStatus.PAST_DUE:
        return EntitlementResult(entitled=False, reason=DenialReason.PAST_DUE)

    if record.status == AccessStatus.CANCELED:
        return EntitlementResult(entitled=False, reason=DenialReason.CANCELED)

    return EntitlementResult(entitled=False, reason=DenialReason.INACTIVE)
