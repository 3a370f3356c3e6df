"""Tests for portal_api/portal_api/services/billing_service.py

Covers:
- Payload helpers (ids, period end, seats, price, invoice subscription)
- construct_event error translation
- Checkout session parameters and live subscription lookup
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from conftest import PERIOD_END, PERIOD_END_TS, make_settings, stripe_subscription
from portal_api.services.billing_service import (
    BillingService,
    InvalidWebhookError,
    invoice_subscription_id,
    object_id,
    subscription_period_end,
    subscription_price_id,
    subscription_seats,
)


class _SignatureVerificationError(Exception):
    pass


def _fake_stripe() -> MagicMock:
    stripe = MagicMock()
    stripe.SignatureVerificationError = _SignatureVerificationError
    return stripe


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestPayloadHelpers:
    def test_object_id(self) -> None:
        assert object_id("cus_1") == "cus_1"
        assert object_id({"id": "cus_1", "object": "customer"}) == "cus_1"
        assert object_id("") is None
        assert object_id(None) is None
        assert object_id({"object": "customer"}) is None

    def test_period_end_top_level(self) -> None:
        assert subscription_period_end(stripe_subscription()) == PERIOD_END

    def test_period_end_on_items(self) -> None:
        assert subscription_period_end(stripe_subscription(period_on_items=True)) == PERIOD_END

    def test_period_end_missing(self) -> None:
        assert subscription_period_end(stripe_subscription(period_end=None)) is None

    def test_seats_sum_items(self) -> None:
        sub = stripe_subscription(quantity=2)
        sub["items"]["data"].append({"id": "si_2", "quantity": 3, "price": {"id": "price_seat"}})

        assert subscription_seats(sub) == 5

    def test_seats_at_least_one(self) -> None:
        assert subscription_seats(stripe_subscription(quantity=0)) == 1

    def test_seats_without_items(self) -> None:
        assert subscription_seats({"id": "sub_1"}) is None

    def test_price_id(self) -> None:
        assert subscription_price_id(stripe_subscription(price_id="price_seat")) == "price_seat"
        assert subscription_price_id({"id": "sub_1"}) is None

    def test_invoice_subscription_id_layouts(self) -> None:
        assert invoice_subscription_id({"subscription": "sub_1"}) == "sub_1"
        assert invoice_subscription_id({"parent": {"subscription_details": {"subscription": "sub_2"}}}) == "sub_2"
        assert invoice_subscription_id({"id": "in_1"}) is None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestConstructEvent:
    def test_valid_event_is_returned_as_dict(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Webhook.construct_event.return_value = {"id": "evt_1", "type": "invoice.paid"}

        with patch.object(service, "_get_stripe", return_value=stripe):
            event = service.construct_event(b"{}", "t=1,v1=abc")

        assert event == {"id": "evt_1", "type": "invoice.paid"}
        stripe.Webhook.construct_event.assert_called_once_with(
            payload=b"{}",
            sig_header="t=1,v1=abc",
            secret="whsec_test_xxx",
        )

    def test_bad_signature(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Webhook.construct_event.side_effect = _SignatureVerificationError("nope")

        with patch.object(service, "_get_stripe", return_value=stripe), pytest.raises(InvalidWebhookError):
            service.construct_event(b"{}", "t=1,v1=bad")

    def test_bad_payload(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Webhook.construct_event.side_effect = ValueError("not json")

        with patch.object(service, "_get_stripe", return_value=stripe), pytest.raises(InvalidWebhookError):
            service.construct_event(b"not json", "t=1,v1=abc")

    def test_missing_secret(self) -> None:
        service = BillingService(make_settings(stripe_webhook_secret=""))

        with patch.object(service, "_get_stripe", return_value=_fake_stripe()), pytest.raises(InvalidWebhookError):
            service.construct_event(b"{}", "t=1,v1=abc")


class TestStripeCalls:
    @pytest.mark.asyncio
    async def test_checkout_session_carries_tenant(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.checkout.Session.create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}

        with patch.object(service, "_get_stripe", return_value=stripe):
            url = await service.create_checkout_session(
                tenant_id="clinic-1",
                price_id="price_basic",
                success_url="https://portal/success",
                cancel_url="https://portal/cancel",
                customer_email="doctor@clinic.example",
            )

        assert url == "https://checkout.stripe.com/cs_1"
        params = stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["client_reference_id"] == "clinic-1"
        assert params["metadata"] == {"tenantId": "clinic-1"}
        assert params["subscription_data"] == {"metadata": {"tenantId": "clinic-1"}}
        assert params["customer_email"] == "doctor@clinic.example"
        assert "customer" not in params

    @pytest.mark.asyncio
    async def test_checkout_session_reuses_customer(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.checkout.Session.create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}

        with patch.object(service, "_get_stripe", return_value=stripe):
            await service.create_checkout_session(
                tenant_id="clinic-1",
                price_id="price_basic",
                success_url="https://portal/success",
                cancel_url="https://portal/cancel",
                customer_id="cus_1",
                customer_email="doctor@clinic.example",
            )

        params = stripe.checkout.Session.create.call_args.kwargs
        assert params["customer"] == "cus_1"
        assert "customer_email" not in params

    @pytest.mark.asyncio
    async def test_find_live_subscription(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Customer.list.return_value = {"data": [{"id": "cus_1"}]}
        stripe.Subscription.list.return_value = {"data": [stripe_subscription()]}

        with patch.object(service, "_get_stripe", return_value=stripe):
            live = await service.find_live_subscription("doctor@clinic.example")

        assert live["id"] == "sub_1"
        stripe.Subscription.list.assert_called_once_with(customer="cus_1", status="all", limit=1)

    @pytest.mark.asyncio
    async def test_find_live_subscription_without_customer(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Customer.list.return_value = {"data": []}

        with patch.object(service, "_get_stripe", return_value=stripe):
            assert await service.find_live_subscription("nobody@clinic.example") is None

        stripe.Subscription.list.assert_not_called()

    @pytest.mark.asyncio
    async def test_retrieve_subscription(self) -> None:
        service = BillingService(make_settings())
        stripe = _fake_stripe()
        stripe.Subscription.retrieve.return_value = {"id": "sub_1", "current_period_end": PERIOD_END_TS}

        with patch.object(service, "_get_stripe", return_value=stripe):
            sub = await service.retrieve_subscription("sub_1")

        assert subscription_period_end(sub) == datetime.fromtimestamp(PERIOD_END_TS, tz=UTC)
