"""Stripe webhook dispatcher.

Turns at-least-once Stripe deliveries into exactly-once access changes.
Each delivery goes through five steps:

1. **Verify** the signature.  Failure answers 400; Stripe does not retry.
2. **Claim** the event id in the idempotency guard.  A marker that already
   exists means another delivery processed (or is processing) the event,
   so the duplicate is acknowledged with ``skipped`` and nothing else
   happens.
3. **Dispatch** on the event type.  Events that apply the live Stripe
   subscription (checkout completion, paid invoices) fetch it first, before
   any database connection is held.
4. **Apply** the change: the handler updates the entitlement store and
   appends an audit entry inside one access scope (one transaction).
5. **Finalize** the marker on success, or **release** it when the handler
   fails so Stripe's retry can process the event again.

When the guard's backing store is unreachable, production and staging
answer 503 so Stripe retries later.  Dev processes the event once without
a marker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from access_core.errors import AccessCoreError, GuardUnavailableError, MissingCorrelationError
from access_core.idempotency.guard import IdempotencyGuard
from access_core.models.access import AccessAction, AccessSource, AccessStatus
from access_core.state.scope import AccessScope, ScopeFactory
from access_core.status_mapper import map_billing_status

from portal_api.config import PlatformEnv, PortalSettings
from portal_api.services.billing_service import (
    BillingService,
    InvalidWebhookError,
    invoice_subscription_id,
    object_id,
    subscription_period_end,
    subscription_price_id,
    subscription_seats,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

HANDLED_EVENT_TYPES: frozenset[str] = frozenset(
    {
        CHECKOUT_COMPLETED,
        SUBSCRIPTION_CREATED,
        SUBSCRIPTION_UPDATED,
        SUBSCRIPTION_DELETED,
        INVOICE_PAID,
        INVOICE_PAYMENT_FAILED,
    }
)

_GUARD_REQUIRED_ENVS: frozenset[PlatformEnv] = frozenset({PlatformEnv.PRODUCTION, PlatformEnv.STAGING})


def _data_object(event: dict[str, Any]) -> dict[str, Any]:
    return (event.get("data") or {}).get("object") or {}


@dataclass
class WebhookResult:
    """HTTP status and JSON body to answer a webhook delivery with."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def checkout_tenant_id(checkout_session: dict[str, Any]) -> str | None:
    """Return the tenant a checkout session was created for.

    Looks at ``metadata.tenantId``, then ``metadata.tenant_id``, then
    ``client_reference_id``.
    """
    metadata = checkout_session.get("metadata") or {}
    for candidate in (
        metadata.get("tenantId"),
        metadata.get("tenant_id"),
        checkout_session.get("client_reference_id"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


@dataclass(frozen=True)
class CheckoutReference:
    tenant_id: str
    customer_id: str
    subscription_id: str


def checkout_reference(checkout_session: dict[str, Any]) -> CheckoutReference | None:
    """Return the tenant, customer and subscription a checkout session links.

    ``None`` for non-subscription checkouts (one-off payments), which carry
    no subscription and never change access.

    Raises
    ------
    MissingCorrelationError
        If a subscription checkout lacks any of the three ids.
    """
    mode = checkout_session.get("mode")
    if mode is not None and mode != "subscription":
        return None

    session_id = checkout_session.get("id")
    tenant_id = checkout_tenant_id(checkout_session)
    if tenant_id is None:
        raise MissingCorrelationError(f"Checkout session {session_id} carries no tenant id")
    customer_id = object_id(checkout_session.get("customer"))
    subscription_id = object_id(checkout_session.get("subscription"))
    if customer_id is None or subscription_id is None:
        raise MissingCorrelationError(f"Checkout session {session_id} lacks customer or subscription id")
    return CheckoutReference(tenant_id, customer_id, subscription_id)


class WebhookDispatcher:
    """Verify, deduplicate and apply Stripe webhook events.

    Parameters
    ----------
    settings:
        Portal settings (environment label and marker TTLs).
    billing:
        Stripe wrapper used for signature checks and subscription re-fetch.
    guard:
        Idempotency guard keyed by Stripe event id.
    scope_factory:
        Opens one transactional store + log scope per event.
    """

    def __init__(
        self,
        *,
        settings: PortalSettings,
        billing: BillingService,
        guard: IdempotencyGuard,
        scope_factory: ScopeFactory,
    ) -> None:
        self._settings = settings
        self._billing = billing
        self._guard = guard
        self._scope_factory = scope_factory

    async def process(self, payload: bytes, sig_header: str | None) -> WebhookResult:
        """Process one webhook delivery and return the response to send."""
        if not sig_header:
            logger.warning("Webhook rejected: missing stripe-signature header")
            return WebhookResult(400, {"detail": "Missing stripe-signature header"})

        try:
            event = self._billing.construct_event(payload, sig_header)
        except InvalidWebhookError as exc:
            logger.warning("Webhook rejected: %s", exc)
            return WebhookResult(400, {"detail": str(exc)})

        event_id = event.get("id")
        event_type = event.get("type", "")
        if not event_id:
            logger.warning("Webhook rejected: event without id (type=%s)", event_type)
            return WebhookResult(400, {"detail": "Event has no id"})

        # -- Claim ------------------------------------------------------------
        guarded = True
        try:
            acquired = await self._guard.try_acquire(event_id)
        except GuardUnavailableError as exc:
            if self._settings.platform_env in _GUARD_REQUIRED_ENVS:
                logger.error("Idempotency guard unavailable for event %s: %s", event_id, exc)
                return WebhookResult(503, {"detail": "Idempotency store unavailable"})
            logger.warning(
                "Idempotency guard unavailable for event %s; processing without marker (%s)",
                event_id,
                exc,
            )
            guarded = False
            acquired = True

        if not acquired:
            logger.info("Duplicate webhook event %s (%s) skipped", event_id, event_type)
            return WebhookResult(200, {"received": True, "skipped": True})

        # -- Dispatch and apply -----------------------------------------------
        try:
            subscription = await self._prefetch_subscription(event)
            async with self._scope_factory() as scope:
                await self._dispatch(event, scope, subscription)
        except Exception:
            logger.error("Webhook handler failed for event %s (%s)", event_id, event_type, exc_info=True)
            if guarded:
                await self._release(event_id)
            return WebhookResult(500, {"detail": "Webhook handler failed"})

        # -- Finalize ---------------------------------------------------------
        if guarded:
            await self._finalize(event_id)

        logger.info("Webhook event %s (%s) processed", event_id, event_type)
        return WebhookResult(200, {"received": True})

    async def _release(self, event_id: str) -> None:
        try:
            await self._guard.release(event_id)
        except GuardUnavailableError:
            # The processing marker lapses after its TTL instead.
            logger.error("Could not release marker for event %s", event_id, exc_info=True)

    async def _finalize(self, event_id: str) -> None:
        try:
            await self._guard.finalize(event_id)
            return
        except GuardUnavailableError:
            logger.warning("Could not finalize marker for event %s; extending it", event_id, exc_info=True)

        try:
            await self._guard.extend(event_id, self._settings.idempotency_finalize_fallback_ttl)
        except GuardUnavailableError:
            logger.error("Could not extend marker for event %s", event_id, exc_info=True)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _prefetch_subscription(self, event: dict[str, Any]) -> dict[str, Any] | None:
        """Fetch the live subscription an event applies, before any scope is open.

        A scope holds a database connection until it exits, so Stripe calls
        never run inside one.  Paid invoices only trigger a fetch when the
        customer is bound, checked in a short read-only scope.
        """
        event_type = event.get("type", "")
        data_object = _data_object(event)

        if event_type == CHECKOUT_COMPLETED:
            reference = checkout_reference(data_object)
            if reference is None:
                return None
            return await self._billing.retrieve_subscription(reference.subscription_id)

        if event_type == INVOICE_PAID:
            customer_id = object_id(data_object.get("customer"))
            subscription_id = invoice_subscription_id(data_object)
            if customer_id is None or subscription_id is None:
                return None
            async with self._scope_factory() as scope:
                bound = await scope.store.get_by_billing_customer(customer_id)
            if bound is None:
                return None
            return await self._billing.retrieve_subscription(subscription_id)

        return None

    async def _dispatch(
        self,
        event: dict[str, Any],
        scope: AccessScope,
        subscription: dict[str, Any] | None = None,
    ) -> None:
        event_type = event.get("type", "")
        data_object = _data_object(event)

        if event_type == CHECKOUT_COMPLETED:
            await self._handle_checkout_completed(event, data_object, scope, subscription)
        elif event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
            await self._handle_subscription_changed(event, data_object, scope)
        elif event_type == SUBSCRIPTION_DELETED:
            await self._handle_subscription_deleted(event, data_object, scope)
        elif event_type == INVOICE_PAID:
            await self._handle_invoice_paid(event, data_object, scope, subscription)
        elif event_type == INVOICE_PAYMENT_FAILED:
            await self._handle_invoice_payment_failed(event, data_object, scope)
        else:
            logger.info("Ignoring unhandled Stripe event type %s (%s)", event_type, event.get("id"))

    @staticmethod
    def _event_metadata(event: dict[str, Any], **extra: Any) -> dict[str, Any]:
        metadata: dict[str, Any] = {"event_id": event.get("id"), "event_type": event.get("type")}
        metadata.update({k: v for k, v in extra.items() if v is not None})
        return metadata

    async def _handle_checkout_completed(
        self,
        event: dict[str, Any],
        checkout_session: dict[str, Any],
        scope: AccessScope,
        subscription: dict[str, Any] | None,
    ) -> None:
        reference = checkout_reference(checkout_session)
        if reference is None:
            logger.info(
                "Checkout session %s (mode=%s) is not a subscription checkout; ignored",
                checkout_session.get("id"),
                checkout_session.get("mode"),
            )
            return
        if subscription is None:
            raise AccessCoreError(f"Subscription {reference.subscription_id} was not fetched")

        tenant_id = reference.tenant_id
        customer_id = reference.customer_id
        subscription_id = reference.subscription_id
        period_end = subscription_period_end(subscription)
        if period_end is None:
            raise AccessCoreError(f"Subscription {subscription_id} has no current period end")
        seats = subscription_seats(subscription) or 1
        plan_id = subscription_price_id(subscription)

        prior = await scope.store.get(tenant_id)
        old_status = prior.status if prior is not None else AccessStatus.INACTIVE

        record = await scope.store.activate(
            tenant_id,
            customer_id,
            subscription_id,
            period_end,
            seats,
            plan_id=plan_id,
        )
        await scope.log.append(
            tenant_id=tenant_id,
            action=AccessAction.ACTIVATE,
            old_status=old_status,
            new_status=record.status,
            source=AccessSource.STRIPE,
            metadata=self._event_metadata(
                event,
                customer_id=customer_id,
                subscription_id=subscription_id,
                quantity=seats,
                plan_id=plan_id,
            ),
        )

    async def _handle_subscription_changed(
        self,
        event: dict[str, Any],
        subscription: dict[str, Any],
        scope: AccessScope,
    ) -> None:
        customer_id = object_id(subscription.get("customer"))
        record = await scope.store.get_by_billing_customer(customer_id) if customer_id else None
        if record is None:
            if event.get("type") == SUBSCRIPTION_CREATED:
                # Checkout completion binds the customer; nothing to do yet.
                logger.info("Subscription created for unbound customer %s; awaiting checkout", customer_id)
            else:
                logger.warning("Subscription update for unmapped customer %s ignored", customer_id)
            return

        stripe_status = subscription.get("status")
        status = map_billing_status(stripe_status)
        seats = subscription_seats(subscription)
        updated = await scope.store.update_status(
            record.tenant_id,
            status,
            active_until=subscription_period_end(subscription),
            seats=seats,
        )
        if updated is None:
            return

        await scope.log.append(
            tenant_id=record.tenant_id,
            action=AccessAction.UPDATE_STATUS,
            old_status=record.status,
            new_status=updated.status,
            source=AccessSource.STRIPE,
            metadata=self._event_metadata(event, stripe_status=stripe_status, quantity=seats),
        )

    async def _handle_subscription_deleted(
        self,
        event: dict[str, Any],
        subscription: dict[str, Any],
        scope: AccessScope,
    ) -> None:
        customer_id = object_id(subscription.get("customer"))
        record = await scope.store.get_by_billing_customer(customer_id) if customer_id else None
        if record is None:
            logger.info("Subscription deleted for unmapped customer %s ignored", customer_id)
            return

        updated = await scope.store.update_status(record.tenant_id, AccessStatus.CANCELED)
        if updated is None:
            return

        await scope.log.append(
            tenant_id=record.tenant_id,
            action=AccessAction.CANCEL,
            old_status=record.status,
            new_status=updated.status,
            source=AccessSource.STRIPE,
            metadata=self._event_metadata(event, subscription_id=object_id(subscription.get("id"))),
        )

    async def _handle_invoice_paid(
        self,
        event: dict[str, Any],
        invoice: dict[str, Any],
        scope: AccessScope,
        subscription: dict[str, Any] | None,
    ) -> None:
        customer_id = object_id(invoice.get("customer"))
        subscription_id = invoice_subscription_id(invoice)
        if customer_id is None or subscription_id is None:
            logger.info("Paid invoice %s is not tied to a subscription; ignored", invoice.get("id"))
            return

        record = await scope.store.get_by_billing_customer(customer_id)
        if record is None:
            logger.warning("Paid invoice for unmapped customer %s ignored", customer_id)
            return
        if subscription is None:
            # Bound after the pre-fetch lookup; Stripe's retry applies it.
            raise AccessCoreError(f"Customer {customer_id} was bound while invoice {invoice.get('id')} was processed")

        seats = subscription_seats(subscription)
        updated = await scope.store.update_status(
            record.tenant_id,
            AccessStatus.ACTIVE,
            active_until=subscription_period_end(subscription),
            seats=seats,
        )
        if updated is None:
            return

        await scope.log.append(
            tenant_id=record.tenant_id,
            action=AccessAction.UPDATE_STATUS,
            old_status=record.status,
            new_status=updated.status,
            source=AccessSource.STRIPE,
            metadata=self._event_metadata(
                event,
                reason="invoice_paid",
                invoice_id=invoice.get("id"),
                quantity=seats,
            ),
        )

    async def _handle_invoice_payment_failed(
        self,
        event: dict[str, Any],
        invoice: dict[str, Any],
        scope: AccessScope,
    ) -> None:
        customer_id = object_id(invoice.get("customer"))
        record = await scope.store.get_by_billing_customer(customer_id) if customer_id else None
        if record is None:
            logger.warning("Failed invoice for unmapped customer %s ignored", customer_id)
            return

        updated = await scope.store.update_status(record.tenant_id, AccessStatus.PAST_DUE)
        if updated is None:
            return

        await scope.log.append(
            tenant_id=record.tenant_id,
            action=AccessAction.UPDATE_STATUS,
            old_status=record.status,
            new_status=updated.status,
            source=AccessSource.STRIPE,
            metadata=self._event_metadata(
                event,
                reason="invoice_payment_failed",
                invoice_id=invoice.get("id"),
            ),
        )
