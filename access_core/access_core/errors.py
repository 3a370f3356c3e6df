"""Exception hierarchy for the access core."""

from __future__ import annotations


class AccessCoreError(Exception):
    """Base class for all access-core errors."""


class BillingCustomerConflictError(AccessCoreError):
    """A billing customer binding would be reassigned.

    Raised when a Stripe customer id is already bound to a different tenant,
    or when a tenant already bound to one customer id is offered another.
    Either case is a data-integrity problem and must never be resolved by
    overwriting the existing binding.
    """

    def __init__(self, tenant_id: str, customer_id: str, bound_to: str) -> None:
        self.tenant_id = tenant_id
        self.customer_id = customer_id
        self.bound_to = bound_to
        super().__init__(
            f"Billing customer binding conflict for tenant {tenant_id!r}: "
            f"customer {customer_id!r} conflicts with existing binding {bound_to!r}"
        )


class MissingCorrelationError(AccessCoreError):
    """A webhook event lacks an identifier needed to apply it."""


class GuardUnavailableError(AccessCoreError):
    """The idempotency guard's backing store could not be reached."""
