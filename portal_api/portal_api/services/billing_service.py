"""Stripe billing integration service.

Wraps the Stripe SDK calls the portal needs: webhook signature
verification, subscription lookups, customer lookup by e-mail and checkout
session creation.  Blocking SDK calls are pushed off the event loop with
:func:`asyncio.to_thread`.

The module-level helpers read the fields the access flow needs out of
Stripe payloads, tolerating both the legacy layout (period end on the
subscription) and the current one (period end on each subscription item).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from portal_api.config import PortalSettings

logger = logging.getLogger(__name__)


class InvalidWebhookError(Exception):
    """The webhook payload or its signature failed verification."""


def _as_dict(obj: Any) -> dict[str, Any]:
    """Convert a Stripe object (or plain mapping) into a plain dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def object_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may be a string or expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        ref = value.get("id")
        return ref if isinstance(ref, str) and ref else None
    return None


def _items(subscription: dict[str, Any]) -> list[dict[str, Any]]:
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, dict) else None
    return [item for item in data or [] if isinstance(item, dict)]


def subscription_period_end(subscription: dict[str, Any]) -> datetime | None:
    """Return the current period end from the subscription or its first item."""
    raw = subscription.get("current_period_end")
    if raw is None:
        items = _items(subscription)
        if items:
            raw = items[0].get("current_period_end")
    if raw is None:
        return None
    return datetime.fromtimestamp(int(raw), tz=UTC)


def subscription_seats(subscription: dict[str, Any]) -> int | None:
    """Return the summed item quantity (at least 1), or ``None`` without items."""
    items = _items(subscription)
    if not items:
        return None
    total = sum(int(item.get("quantity") or 0) for item in items)
    return max(total, 1)


def subscription_price_id(subscription: dict[str, Any]) -> str | None:
    """Return the price id of the first subscription item."""
    items = _items(subscription)
    if not items:
        return None
    price = items[0].get("price")
    return object_id(price)


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Return the subscription id an invoice belongs to.

    Newer API versions nest it under ``parent.subscription_details``.
    """
    sub_id = object_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return object_id(details.get("subscription"))


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BillingService:
    """Stripe operations used by the webhook dispatcher and the portal routers.

    Parameters
    ----------
    settings:
        Portal settings containing Stripe configuration.
    """

    def __init__(self, settings: PortalSettings) -> None:
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    def construct_event(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify a webhook delivery and return the parsed event.

        Raises
        ------
        InvalidWebhookError
            If the payload cannot be parsed or the signature does not match
            the configured webhook secret.
        """
        stripe = self._get_stripe()
        secret = self._settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise InvalidWebhookError("Webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=sig_header,
                secret=secret,
            )
        except ValueError as exc:
            raise InvalidWebhookError("Invalid payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise InvalidWebhookError("Signature verification failed") from exc
        return _as_dict(event)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch the live subscription from Stripe."""
        stripe = self._get_stripe()
        subscription = await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id)
        return _as_dict(subscription)

    async def find_live_subscription(self, email: str) -> dict[str, Any] | None:
        """Return the newest subscription of the customer with *email*, or ``None``."""
        stripe = self._get_stripe()
        customers = _as_dict(await asyncio.to_thread(stripe.Customer.list, email=email, limit=1))
        customer_data = customers.get("data") or []
        if not customer_data:
            return None

        customer_id = object_id(customer_data[0])
        subscriptions = _as_dict(
            await asyncio.to_thread(
                stripe.Subscription.list,
                customer=customer_id,
                status="all",
                limit=1,
            )
        )
        sub_data = subscriptions.get("data") or []
        if not sub_data:
            return None
        return _as_dict(sub_data[0])

    async def create_checkout_session(
        self,
        *,
        tenant_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
    ) -> str:
        """Create a subscription-mode Checkout session and return its URL.

        If the tenant is already bound to a Stripe customer the session is
        created for that customer; otherwise Stripe creates one inline,
        pre-filled with ``customer_email``.  The tenant id is attached to
        both the session and the resulting subscription so the webhook can
        correlate the payment back to the tenant.
        """
        stripe = self._get_stripe()

        session_params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": tenant_id,
            "metadata": {"tenantId": tenant_id},
            "subscription_data": {"metadata": {"tenantId": tenant_id}},
        }
        if customer_id:
            session_params["customer"] = customer_id
        elif customer_email:
            session_params["customer_email"] = customer_email

        checkout_session = _as_dict(await asyncio.to_thread(stripe.checkout.Session.create, **session_params))
        logger.info("Created checkout session %s for tenant %s", checkout_session.get("id"), tenant_id)
        return checkout_session["url"]
