"""Tests for portlio_api/routers/billing.py

Covers:
- GET /billing/plans: catalog shape, no auth required
- GET /billing/subscription and /billing/usage for a free user
- POST /billing/checkout: parameters sent to Stripe, guard rails, billing disabled
- POST /billing/portal and /billing/cancel
- POST /billing/webhooks: signature validation, dispatch, failure rollback
"""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from portlio_core.state.repository import SubscriptionRepository, UserProfileRepository
from portlio_core.state.tables import UserSubscriptionTable

from portlio_api.services.billing_service import BillingService
from portlio_api.services.subscription_service import SubscriptionService

OWNER_ID = "user-1"


def _fake_stripe() -> MagicMock:
    stripe = MagicMock()
    stripe.checkout.Session.create.return_value = {"id": "cs_test_123", "url": "https://checkout.stripe.test/cs_123"}
    stripe.billing_portal.Session.create.return_value = {"url": "https://billing.stripe.test/p_123"}
    return stripe


async def _insert_subscription(session_factory, **overrides) -> None:
    values = {
        "user_id": OWNER_ID,
        "plan_id": "professional",
        "status": "active",
        "stripe_customer_id": "cus_123",
        "stripe_subscription_id": "sub_123",
        "current_period_start": datetime.now(UTC),
        "current_period_end": datetime.now(UTC) + timedelta(days=30),
    }
    values.update(overrides)
    async with session_factory() as session:
        session.add(UserSubscriptionTable(**values))
        await session.commit()


# ---------------------------------------------------------------------------
# Catalog, subscription and usage
# ---------------------------------------------------------------------------


class TestPlansAndUsage:
    @pytest.mark.asyncio
    async def test_plans_catalog(self, client) -> None:
        resp = await client.get("/api/v1/billing/plans")

        assert resp.status_code == 200
        plans = {p["plan_id"]: p for p in resp.json()["plans"]}
        assert set(plans) == {"free", "professional", "agency"}
        assert plans["free"]["display_name"] == "Starter"
        assert plans["free"]["limits"]["max_portals"] == 2
        assert plans["free"]["purchasable"] is False
        assert plans["professional"]["monthly_price_usd"] == 29
        assert "analytics" in plans["professional"]["features"]
        assert "white_label" in plans["agency"]["features"]

    @pytest.mark.asyncio
    async def test_subscription_without_row(self, client, owner_id, auth_headers) -> None:
        resp = await client.get("/api/v1/billing/subscription", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["plan_id"] == "free"
        assert data["status"] == "none"
        assert data["billing_enabled"] is True

    @pytest.mark.asyncio
    async def test_usage_for_free_user(self, client, owner_id, auth_headers) -> None:
        await client.post("/api/v1/portals", json={"title": "First"}, headers=auth_headers)

        resp = await client.get("/api/v1/billing/usage", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["plan_id"] == "free"
        assert data["portals_created"] == 1
        assert data["max_portals"] == 2
        assert data["portals_percentage"] == 50.0
        assert data["can_create_portal"] is True

    @pytest.mark.asyncio
    async def test_usage_for_paid_user_reports_unlimited(
        self, client, owner_id, auth_headers, session_factory
    ) -> None:
        await _insert_subscription(session_factory)

        data = (await client.get("/api/v1/billing/usage", headers=auth_headers)).json()

        assert data["plan_id"] == "professional"
        assert data["portals_unlimited"] is True
        assert data["portals_percentage"] == 0.0


# ---------------------------------------------------------------------------
# Checkout and customer portal
# ---------------------------------------------------------------------------


class TestCheckout:
    @pytest.mark.asyncio
    async def test_checkout_session_parameters(self, client, owner_id, auth_headers) -> None:
        stripe = _fake_stripe()
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post(
                "/api/v1/billing/checkout",
                json={"plan_id": "pro"},
                headers=auth_headers,
            )

        assert resp.status_code == 200
        assert resp.json() == {"session_id": "cs_test_123", "url": "https://checkout.stripe.test/cs_123"}

        params = stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_professional", "quantity": 1}]
        assert params["metadata"] == {"userId": OWNER_ID, "planId": "professional"}
        assert params["subscription_data"]["metadata"]["userId"] == OWNER_ID
        assert params["billing_address_collection"] == "required"
        assert params["customer_email"] == "owner@example.com"
        assert params["success_url"] == "https://app.portlio.test/dashboard?session_id={CHECKOUT_SESSION_ID}"
        assert params["cancel_url"] == "https://app.portlio.test/pricing"

    @pytest.mark.asyncio
    async def test_checkout_reuses_existing_customer(self, client, owner_id, auth_headers, session_factory) -> None:
        await _insert_subscription(session_factory, status="canceled")
        stripe = _fake_stripe()
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "agency"}, headers=auth_headers)

        assert resp.status_code == 200
        params = stripe.checkout.Session.create.call_args.kwargs
        assert params["customer"] == "cus_123"
        assert "customer_email" not in params

    @pytest.mark.asyncio
    async def test_checkout_rejected_with_active_subscription(
        self, client, owner_id, auth_headers, session_factory
    ) -> None:
        await _insert_subscription(session_factory)
        stripe = _fake_stripe()
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "agency"}, headers=auth_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "You already have an active subscription"
        stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_checkout_free_plan_rejected(self, client, owner_id, auth_headers) -> None:
        resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "free"}, headers=auth_headers)
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_checkout_stripe_failure_is_bad_gateway(self, client, owner_id, auth_headers) -> None:
        stripe = _fake_stripe()
        stripe.checkout.Session.create.side_effect = RuntimeError("card_declined")
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers)

        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_checkout_when_billing_disabled(self, client, owner_id, auth_headers, test_settings) -> None:
        test_settings.billing_enabled = False
        resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_checkout_requires_auth(self, client) -> None:
        resp = await client.post("/api/v1/billing/checkout", json={"plan_id": "pro"})
        assert resp.status_code == 401


class TestPortalAndCancel:
    @pytest.mark.asyncio
    async def test_portal_without_customer(self, client, owner_id, auth_headers) -> None:
        resp = await client.post("/api/v1/billing/portal", json={}, headers=auth_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_portal_session(self, client, owner_id, auth_headers, session_factory) -> None:
        await _insert_subscription(session_factory)
        stripe = _fake_stripe()
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post("/api/v1/billing/portal", json={}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["url"] == "https://billing.stripe.test/p_123"
        stripe.billing_portal.Session.create.assert_called_once_with(
            customer="cus_123",
            return_url="https://app.portlio.test/dashboard",
        )

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self, client, owner_id, auth_headers, session_factory) -> None:
        await _insert_subscription(session_factory)
        stripe = _fake_stripe()
        with patch.object(BillingService, "_get_stripe", return_value=stripe):
            resp = await client.post("/api/v1/billing/cancel", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["cancel_at_period_end"] is True
        stripe.Subscription.modify.assert_called_once_with("sub_123", cancel_at_period_end=True)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def _checkout_event(user_id: str = OWNER_ID) -> dict:
    return {
        "id": "evt_checkout_1",
        "type": "checkout.session.completed",
        "created": int(time.time()),
        "data": {
            "object": {
                "id": "cs_test_123",
                "customer": "cus_123",
                "subscription": "sub_123",
                "metadata": {"userId": user_id, "planId": "professional"},
            }
        },
    }


async def _post_webhook(client, event: dict, signature: str = "t=1,v1=abc"):
    headers = {"Content-Type": "application/json"}
    if signature:
        headers["Stripe-Signature"] = signature
    return await client.post("/api/v1/billing/webhooks", content=json.dumps(event), headers=headers)


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_missing_signature(self, client) -> None:
        resp = await _post_webhook(client, _checkout_event(), signature="")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing Stripe signature"

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client) -> None:
        with patch("stripe.Webhook.construct_event", side_effect=Exception("No signatures found")):
            resp = await _post_webhook(client, _checkout_event())

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client) -> None:
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
            resp = await _post_webhook(client, _checkout_event())

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid payload"

    @pytest.mark.asyncio
    async def test_checkout_completed_activates_subscription(self, client, owner_id, session_factory) -> None:
        with patch("stripe.Webhook.construct_event", return_value=MagicMock()):
            resp = await _post_webhook(client, _checkout_event())

        assert resp.status_code == 200
        assert resp.json() == {"received": True}

        async with session_factory() as session:
            row = await SubscriptionRepository(session, OWNER_ID).get()
            profile = await UserProfileRepository(session, OWNER_ID).get()
        assert row is not None
        assert row.status == "active"
        assert row.plan_id == "professional"
        assert profile is not None
        assert profile.plan_id == "professional"

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, client) -> None:
        event = {"id": "evt_2", "type": "customer.created", "created": int(time.time()), "data": {"object": {}}}
        with patch("stripe.Webhook.construct_event", return_value=MagicMock()):
            resp = await _post_webhook(client, event)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}

    @pytest.mark.asyncio
    async def test_handler_failure_returns_500_and_rolls_back(self, client, owner_id, session_factory) -> None:
        with (
            patch("stripe.Webhook.construct_event", return_value=MagicMock()),
            patch.object(SubscriptionService, "handle_event", AsyncMock(side_effect=RuntimeError("boom"))),
        ):
            resp = await _post_webhook(client, _checkout_event())

        assert resp.status_code == 500
        assert resp.json() == {"error": "Webhook processing failed"}
        async with session_factory() as session:
            assert await SubscriptionRepository(session, OWNER_ID).get() is None

    @pytest.mark.asyncio
    async def test_billing_disabled_acknowledges_without_processing(
        self, client, owner_id, session_factory, test_settings
    ) -> None:
        test_settings.billing_enabled = False
        resp = await _post_webhook(client, _checkout_event())

        assert resp.status_code == 200
        assert resp.json() == {"status": "billing_disabled"}
        async with session_factory() as session:
            assert await SubscriptionRepository(session, OWNER_ID).get() is None
