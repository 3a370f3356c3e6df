"""Tests for GET /api/v1/subscription/status"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from access_core.models.access import AccessStatus
from conftest import PERIOD_END, auth_headers, stripe_subscription

STATUS_URL = "/api/v1/subscription/status"


class TestSubscriptionStatus:
    @pytest.mark.asyncio
    async def test_active_record_snapshot(self, client, store, mock_billing) -> None:
        await store.activate("clinic-1", "cus_1", "sub_1", PERIOD_END, 4, plan_id="price_basic")

        resp = await client.get(STATUS_URL, headers=auth_headers())

        assert resp.status_code == 200
        sub = resp.json()["subscription"]
        assert sub["status"] == "active"
        assert sub["source"] == "stripe"
        assert sub["plan"] == "price_basic"
        assert sub["entitled"] is True
        assert sub["mode"] == "ACTIVE"
        assert sub["seats"] == 4
        assert sub["seatsUsed"] == 0
        assert sub["currentPeriodEnd"] == PERIOD_END.isoformat()
        mock_billing.find_live_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_trial_snapshot_uses_trial_plan(self, client, store) -> None:
        record = await store.grant_trial("clinic-1", 14, 2)

        sub = (await client.get(STATUS_URL, headers=auth_headers())).json()["subscription"]

        assert sub["status"] == "trialing"
        assert sub["source"] == "manual"
        assert sub["plan"] == "trial"
        assert sub["mode"] == "TRIAL"
        assert sub["trialEndsAt"] == record.trial_ends_at.isoformat()
        assert sub["currentPeriodEnd"] == record.trial_ends_at.isoformat()

    @pytest.mark.asyncio
    async def test_expired_active_record_is_not_entitled(self, client, store) -> None:
        past = datetime.now(UTC) - timedelta(days=1)
        await store.activate("clinic-1", "cus_1", "sub_1", past, 1)

        sub = (await client.get(STATUS_URL, headers=auth_headers())).json()["subscription"]

        assert sub["status"] == "active"
        assert sub["entitled"] is False
        assert sub["mode"] is None
        assert sub["reason"] == "ACTIVE_BUT_EXPIRED"

    @pytest.mark.asyncio
    async def test_past_due_record(self, client, store) -> None:
        await store.activate("clinic-1", "cus_1", "sub_1", PERIOD_END, 1)
        await store.update_status("clinic-1", AccessStatus.PAST_DUE)

        sub = (await client.get(STATUS_URL, headers=auth_headers())).json()["subscription"]

        assert sub["status"] == "past_due"
        assert sub["reason"] == "PAST_DUE"

    @pytest.mark.asyncio
    async def test_falls_back_to_live_lookup_by_email(self, client, mock_billing) -> None:
        mock_billing.find_live_subscription.return_value = stripe_subscription(status="trialing", quantity=2)

        resp = await client.get(STATUS_URL, headers=auth_headers())

        mock_billing.find_live_subscription.assert_awaited_once_with("doctor@clinic.example")
        sub = resp.json()["subscription"]
        assert sub["status"] == "trialing"
        assert sub["source"] == "stripe"
        assert sub["seats"] == 2
        assert sub["plan"] == "price_basic"

    @pytest.mark.asyncio
    async def test_no_subscription_anywhere_is_null(self, client) -> None:
        resp = await client.get(STATUS_URL, headers=auth_headers())

        assert resp.status_code == 200
        assert resp.json() == {"subscription": None}

    @pytest.mark.asyncio
    async def test_stripe_lookup_error_is_null(self, client, mock_billing) -> None:
        mock_billing.find_live_subscription.side_effect = RuntimeError("stripe down")

        resp = await client.get(STATUS_URL, headers=auth_headers())

        assert resp.status_code == 200
        assert resp.json() == {"subscription": None}

    @pytest.mark.asyncio
    async def test_session_without_email_or_tenant_is_null(self, client, mock_billing) -> None:
        resp = await client.get(STATUS_URL, headers=auth_headers(email=None, tenant_id=None))

        assert resp.json() == {"subscription": None}
        mock_billing.find_live_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client) -> None:
        resp = await client.get(STATUS_URL)

        assert resp.status_code == 401
        assert resp.json()["authenticated"] is False
