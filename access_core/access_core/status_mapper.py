"""Translate Stripe subscription statuses into internal access statuses.

The mapping is total: every input, including ``None`` and values Stripe
may introduce in the future, maps to a status.  Unknown values fall back
to :attr:`AccessStatus.INACTIVE` so an unrecognised state never grants
access.
"""

from __future__ import annotations

from typing import Any

from access_core.models.access import AccessStatus

_BILLING_STATUS_MAP: dict[str, AccessStatus] = {
    "active": AccessStatus.ACTIVE,
    "trialing": AccessStatus.TRIALING,
    "past_due": AccessStatus.PAST_DUE,
    "unpaid": AccessStatus.PAST_DUE,
    "paused": AccessStatus.PAST_DUE,
    "canceled": AccessStatus.CANCELED,
    "incomplete": AccessStatus.INACTIVE,
    "incomplete_expired": AccessStatus.INACTIVE,
}


def map_billing_status(external_status: Any) -> AccessStatus:
    """Return the internal status for a Stripe subscription status string."""
    if not isinstance(external_status, str):
        return AccessStatus.INACTIVE
    return _BILLING_STATUS_MAP.get(external_status.strip().lower(), AccessStatus.INACTIVE)
