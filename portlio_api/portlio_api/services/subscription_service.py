"""Apply Stripe webhook events to the local subscription record.

Handlers address the subscription by Stripe customer id and overwrite
fields rather than increment them, so redelivered events leave the same
state behind.  Events for an unknown customer are logged and dropped.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from portlio_core.billing.plans import PURCHASABLE_PLANS, PlanId, pricing_for, resolve_plan_id
from portlio_core.state.repository import (
    SubscriptionRepository,
    UserProfileRepository,
    UserRepository,
)
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings
from portlio_api.services.email_service import EmailService, EmailType
from portlio_api.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _object_id(value: Any) -> str | None:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


class SubscriptionService:
    """Reconcile ``user_subscriptions`` with Stripe events.

    Parameters
    ----------
    session:
        Active database session; handlers only flush.
    settings:
        Supplies the billing cycle length and price-to-plan mapping.
    email_service:
        Sender for the upgrade and payment emails.  Defaults to an
        :class:`EmailService` on the same session.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        email_service: EmailService | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._subscriptions = SubscriptionRepository(session)
        self._emails = email_service or EmailService(session, settings)

    async def handle_event(self, event: dict[str, Any]) -> dict[str, str]:
        """Dispatch a verified Stripe event.

        Returns
        -------
        dict
            ``{"status": "processed"}`` or ``{"status": "ignored"}`` for
            event types this service does not handle.
        """
        event_type = event.get("type", "")
        data_object = event.get("data", {}).get("object", {}) or {}
        event_at = _timestamp(event.get("created"))

        logger.info("Stripe event received: id=%s type=%s", event.get("id"), event_type)

        if event_type == CHECKOUT_COMPLETED:
            await self.on_checkout_completed(data_object, event_at=event_at)
        elif event_type == INVOICE_PAYMENT_SUCCEEDED:
            await self.on_invoice_payment_succeeded(data_object, event_at=event_at)
        elif event_type == SUBSCRIPTION_UPDATED:
            await self.on_subscription_updated(data_object, event_at=event_at)
        elif event_type == SUBSCRIPTION_DELETED:
            await self.on_subscription_deleted(data_object, event_at=event_at)
        else:
            logger.info("Unhandled Stripe event type: %s", event_type)
            return {"status": "ignored"}
        return {"status": "processed"}

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def on_checkout_completed(self, checkout: dict[str, Any], *, event_at: datetime | None = None) -> None:
        """Create or overwrite the buyer's subscription as ``active``.

        The period end comes from an expanded subscription object when
        Stripe sends one, else ``now + billing_cycle_days``.
        """
        metadata = checkout.get("metadata") or {}
        user_id = metadata.get("userId")
        customer_id = _object_id(checkout.get("customer"))
        subscription = checkout.get("subscription")
        subscription_id = _object_id(subscription)

        if not user_id or not customer_id or not subscription_id:
            logger.warning(
                "Checkout %s is missing userId, customer or subscription; skipping",
                checkout.get("id"),
            )
            return

        user = await UserRepository(self._session).get_by_id(user_id)
        if user is None:
            logger.warning("Checkout %s references unknown user %s; skipping", checkout.get("id"), user_id)
            return

        plan_id = resolve_plan_id(metadata.get("planId"))
        if plan_id not in PURCHASABLE_PLANS:
            logger.warning("Checkout %s has non-purchasable plan %r", checkout.get("id"), metadata.get("planId"))

        now = datetime.now(UTC)
        period_start = now
        period_end = None
        if isinstance(subscription, dict):
            period_start = _timestamp(subscription.get("current_period_start")) or now
            period_end = _timestamp(subscription.get("current_period_end"))
        if period_end is None:
            period_end = now + timedelta(days=self._settings.billing_cycle_days)

        row = await SubscriptionRepository(self._session, user_id).upsert_for_user(
            plan_id=plan_id.value,
            status="active",
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
            current_period_start=period_start,
            current_period_end=period_end,
            event_at=event_at,
        )
        if row is None:
            logger.info(
                "Stale checkout %s for user %s ignored (event at %s)", checkout.get("id"), user_id, event_at
            )
            return

        await ProfileService(self._session, self._settings, user_id).get_or_create(email=user.email)
        await UserProfileRepository(self._session, user_id).set_plan(plan_id.value)
        logger.info("Subscription activated: user=%s plan=%s customer=%s", user_id, plan_id.value, customer_id)

        await self._emails.send_best_effort(
            EmailType.UPGRADE_WELCOME,
            user.email,
            {"planName": pricing_for(plan_id).display_name},
        )

    async def on_invoice_payment_succeeded(self, invoice: dict[str, Any], *, event_at: datetime | None = None) -> None:
        """Mark the subscription active and send the receipt.

        An invoice older than the last event applied to the row, such as a
        late delivery after cancellation, changes nothing.
        """
        customer_id = _object_id(invoice.get("customer"))
        row = await self._subscriptions.get_by_customer(customer_id) if customer_id else None
        if row is None:
            logger.warning("Payment succeeded for unknown customer %s; no subscription updated", customer_id)
            return

        updated = await self._subscriptions.update_by_customer(
            customer_id,
            {"status": "active", "last_payment_date": datetime.now(UTC)},
            event_at=event_at,
        )
        if not updated:
            logger.info(
                "Stale invoice %s for customer %s ignored (event at %s)", invoice.get("id"), customer_id, event_at
            )
            return
        logger.info("Payment recorded for customer %s (invoice %s)", customer_id, invoice.get("id"))

        owner = await UserRepository(self._session).get_by_id(row.user_id)
        if owner is None:
            return
        profile = await UserProfileRepository(self._session, row.user_id).get()
        amount_paid = invoice.get("amount_paid") or 0
        await self._emails.send_best_effort(
            EmailType.PAYMENT_SUCCESS,
            owner.email,
            {
                "name": (profile.full_name if profile is not None else None) or owner.email.split("@")[0],
                "planName": pricing_for(row.plan_id).display_name,
                "amount": round(amount_paid / 100, 2),
            },
        )

    async def on_subscription_updated(self, subscription: dict[str, Any], *, event_at: datetime | None = None) -> None:
        """Overwrite status, period end and the cancel flag.

        An event older than the last one applied to the row is ignored.
        """
        customer_id = _object_id(subscription.get("customer"))
        row = await self._subscriptions.get_by_customer(customer_id) if customer_id else None
        if row is None:
            logger.warning("Subscription update for unknown customer %s; ignored", customer_id)
            return

        values: dict[str, Any] = {
            "status": subscription.get("status", row.status),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end", False)),
        }
        period_end = _timestamp(subscription.get("current_period_end"))
        if period_end is not None:
            values["current_period_end"] = period_end
        plan_id = self._plan_for_price(subscription)
        if plan_id is not None:
            values["plan_id"] = plan_id.value

        updated = await self._subscriptions.update_by_customer(customer_id, values, event_at=event_at)
        if not updated:
            logger.info("Stale subscription update for customer %s ignored (event at %s)", customer_id, event_at)
            return
        if plan_id is not None:
            await UserProfileRepository(self._session, row.user_id).set_plan(plan_id.value)

    async def on_subscription_deleted(self, subscription: dict[str, Any], *, event_at: datetime | None = None) -> None:
        """Mark the subscription canceled and revert the profile to ``free``."""
        customer_id = _object_id(subscription.get("customer"))
        row = await self._subscriptions.get_by_customer(customer_id) if customer_id else None
        if row is None:
            logger.warning("Subscription deletion for unknown customer %s; ignored", customer_id)
            return
        deleted_id = subscription.get("id")
        if deleted_id and row.stripe_subscription_id and deleted_id != row.stripe_subscription_id:
            logger.info("Deletion of superseded subscription %s for customer %s ignored", deleted_id, customer_id)
            return

        values: dict[str, Any] = {"status": "canceled"}
        if row.canceled_at is None:
            values["canceled_at"] = datetime.now(UTC)
        if event_at is not None and (row.last_event_at is None or row.last_event_at < event_at):
            values["last_event_at"] = event_at

        await self._subscriptions.update_by_customer(customer_id, values)
        await UserProfileRepository(self._session, row.user_id).set_plan(PlanId.FREE.value)
        logger.info("Subscription canceled: user=%s customer=%s", row.user_id, customer_id)

    def _plan_for_price(self, subscription: dict[str, Any]) -> PlanId | None:
        """Map the first subscription item's price to a plan, if configured."""
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            return None
        price_id = (items[0].get("price") or {}).get("id", "")
        price_map = {
            self._settings.stripe_price_professional: PlanId.PROFESSIONAL,
            self._settings.stripe_price_agency: PlanId.AGENCY,
        }
        price_map.pop("", None)
        return price_map.get(price_id)
