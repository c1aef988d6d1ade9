"""Tests for portlio_api/services/subscription_service.py

Webhook handlers must be idempotent under redelivery, ignore unknown
customers, and never let an older event overwrite newer state.
"""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import pytest
from portlio_core.state.repository import SubscriptionRepository, UserProfileRepository
from portlio_core.state.tables import UserSubscriptionTable
from sqlalchemy import func, select

from portlio_api.services.email_service import EmailType
from portlio_api.services.subscription_service import SubscriptionService

OWNER_ID = "user-1"


def _event(event_type: str, data_object: dict, created: int | None = None, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": data_object},
    }


def _checkout(created: int | None = None, plan_id: str = "professional") -> dict:
    return _event(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "customer": "cus_1",
            "subscription": "sub_1",
            "metadata": {"userId": OWNER_ID, "planId": plan_id},
        },
        created=created,
    )


def _subscription_updated(created: int, **fields) -> dict:
    obj = {"id": "sub_1", "customer": "cus_1", "status": "active", "cancel_at_period_end": False}
    obj.update(fields)
    return _event("customer.subscription.updated", obj, created=created, event_id=f"evt_upd_{created}")


@pytest.fixture()
def emails() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def service(db_session, test_settings, emails) -> SubscriptionService:
    return SubscriptionService(db_session, test_settings, email_service=emails)


async def _subscription(db_session) -> UserSubscriptionTable | None:
    return await SubscriptionRepository(db_session, OWNER_ID).get()


class TestCheckoutCompleted:
    @pytest.mark.asyncio
    async def test_creates_active_subscription(self, service, db_session, owner_id, emails) -> None:
        result = await service.handle_event(_checkout())

        assert result == {"status": "processed"}
        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
        assert row.plan_id == "professional"
        assert row.stripe_customer_id == "cus_1"
        assert row.stripe_subscription_id == "sub_1"
        assert row.current_period_end > row.current_period_start

        profile = await UserProfileRepository(db_session, OWNER_ID).get()
        assert profile is not None
        assert profile.plan_id == "professional"
        emails.send_best_effort.assert_awaited_once_with(
            EmailType.UPGRADE_WELCOME,
            "owner@example.com",
            {"planName": "Professional"},
        )

    @pytest.mark.asyncio
    async def test_replay_keeps_single_row(self, service, db_session, owner_id) -> None:
        event = _checkout()
        await service.handle_event(event)
        await service.handle_event(event)

        count = await db_session.scalar(
            select(func.count()).select_from(UserSubscriptionTable).where(UserSubscriptionTable.user_id == OWNER_ID)
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_uses_expanded_subscription_period(self, service, db_session, owner_id) -> None:
        start = int(time.time())
        end = start + 31 * 86_400
        event = _checkout()
        event["data"]["object"]["subscription"] = {
            "id": "sub_1",
            "current_period_start": start,
            "current_period_end": end,
        }

        await service.handle_event(event)

        row = await _subscription(db_session)
        assert row is not None
        assert row.stripe_subscription_id == "sub_1"
        assert int(row.current_period_end.timestamp()) == end

    @pytest.mark.asyncio
    async def test_missing_metadata_is_skipped(self, service, db_session, owner_id, emails) -> None:
        event = _checkout()
        event["data"]["object"]["metadata"] = {}

        assert await service.handle_event(event) == {"status": "processed"}
        assert await _subscription(db_session) is None
        emails.send_best_effort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_user_is_skipped(self, service, db_session, owner_id) -> None:
        event = _checkout()
        event["data"]["object"]["metadata"]["userId"] = "ghost"

        await service.handle_event(event)

        count = await db_session.scalar(select(func.count()).select_from(UserSubscriptionTable))
        assert count == 0


class TestInvoicePaymentSucceeded:
    @pytest.mark.asyncio
    async def test_unknown_customer_writes_nothing(self, service, db_session, owner_id, emails) -> None:
        event = _event("invoice.payment_succeeded", {"id": "in_1", "customer": "cus_unknown", "amount_paid": 2900})

        assert await service.handle_event(event) == {"status": "processed"}

        count = await db_session.scalar(select(func.count()).select_from(UserSubscriptionTable))
        assert count == 0
        emails.send_best_effort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_records_payment_and_sends_receipt(self, service, db_session, owner_id, emails) -> None:
        await service.handle_event(_checkout())
        emails.reset_mock()

        event = _event("invoice.payment_succeeded", {"id": "in_1", "customer": "cus_1", "amount_paid": 2900})
        await service.handle_event(event)

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
        assert row.last_payment_date is not None
        emails.send_best_effort.assert_awaited_once_with(
            EmailType.PAYMENT_SUCCESS,
            "owner@example.com",
            {"name": "owner", "planName": "Professional", "amount": 29.0},
        )


class TestSubscriptionUpdated:
    @pytest.mark.asyncio
    async def test_applies_status_and_cancel_flag(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))

        await service.handle_event(_subscription_updated(now + 10, status="past_due", cancel_at_period_end=True))

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "past_due"
        assert row.cancel_at_period_end is True

    @pytest.mark.asyncio
    async def test_stale_event_is_ignored(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))
        await service.handle_event(_subscription_updated(now + 20, status="active", cancel_at_period_end=True))

        # Delivered late: older than the last applied event.
        await service.handle_event(_subscription_updated(now + 10, status="past_due"))

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
        assert row.cancel_at_period_end is True

    @pytest.mark.asyncio
    async def test_price_change_moves_plan(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))

        event = _subscription_updated(now + 10, items={"data": [{"price": {"id": "price_agency"}}]})
        await service.handle_event(event)

        row = await _subscription(db_session)
        assert row is not None
        assert row.plan_id == "agency"
        profile = await UserProfileRepository(db_session, OWNER_ID).get()
        assert profile is not None
        assert profile.plan_id == "agency"


class TestSubscriptionDeleted:
    @pytest.mark.asyncio
    async def test_cancels_and_reverts_profile(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))

        event = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}, created=now + 10)
        await service.handle_event(event)

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "canceled"
        assert row.canceled_at is not None
        profile = await UserProfileRepository(db_session, OWNER_ID).get()
        assert profile is not None
        assert profile.plan_id == "free"

    @pytest.mark.asyncio
    async def test_replay_keeps_first_cancellation_time(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))
        event = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}, created=now + 10)

        await service.handle_event(event)
        first = (await _subscription(db_session)).canceled_at
        await service.handle_event(event)
        row = await _subscription(db_session)

        assert row.status == "canceled"
        assert row.canceled_at == first


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unhandled_type_is_ignored(self, service) -> None:
        result = await service.handle_event(_event("customer.created", {"id": "cus_1"}))
        assert result == {"status": "ignored"}


class TestOutOfOrderDelivery:
    @pytest.mark.asyncio
    async def test_checkout_replay_after_delete_keeps_cancellation(self, service, db_session, owner_id, emails) -> None:
        now = int(time.time())
        checkout = _checkout(created=now)
        await service.handle_event(checkout)
        deleted = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}, created=now + 10)
        await service.handle_event(deleted)
        emails.reset_mock()

        await service.handle_event(checkout)

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "canceled"
        assert row.canceled_at is not None
        assert int(row.last_event_at.timestamp()) == now + 10
        profile = await UserProfileRepository(db_session, OWNER_ID).get()
        assert profile is not None
        assert profile.plan_id == "free"
        emails.send_best_effort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_invoice_after_delete_changes_nothing(self, service, db_session, owner_id, emails) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))
        deleted = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}, created=now + 10)
        await service.handle_event(deleted)
        emails.reset_mock()

        invoice = _event(
            "invoice.payment_succeeded",
            {"id": "in_1", "customer": "cus_1", "amount_paid": 2900},
            created=now + 5,
            event_id="evt_inv",
        )
        await service.handle_event(invoice)

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "canceled"
        assert row.last_payment_date is None
        emails.send_best_effort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checkout_replay_does_not_rewind_event_time(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))
        await service.handle_event(_subscription_updated(now + 20, status="active", cancel_at_period_end=True))

        await service.handle_event(_checkout(created=now))
        await service.handle_event(_subscription_updated(now + 10, status="past_due"))

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
        assert row.cancel_at_period_end is True
        assert int(row.last_event_at.timestamp()) == now + 20

    @pytest.mark.asyncio
    async def test_newer_checkout_resubscribes_after_delete(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))
        deleted = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}, created=now + 10)
        await service.handle_event(deleted)

        await service.handle_event(_checkout(created=now + 20, plan_id="agency"))

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
        assert row.plan_id == "agency"
        assert row.canceled_at is None

    @pytest.mark.asyncio
    async def test_deletion_of_superseded_subscription_ignored(self, service, db_session, owner_id) -> None:
        now = int(time.time())
        await service.handle_event(_checkout(created=now))

        deleted = _event("customer.subscription.deleted", {"id": "sub_old", "customer": "cus_1"}, created=now + 10)
        await service.handle_event(deleted)

        row = await _subscription(db_session)
        assert row is not None
        assert row.status == "active"
