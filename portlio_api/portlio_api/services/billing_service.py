"""Stripe Checkout, billing-portal and cancellation for one user."""

from __future__ import annotations

import logging
from typing import Any

from portlio_core.billing.plans import PURCHASABLE_PLANS, resolve_plan_id
from portlio_core.errors import ExternalServiceError, NotFoundError
from portlio_core.state.repository import SubscriptionRepository
from portlio_core.state.tables import UserSubscriptionTable
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings

logger = logging.getLogger(__name__)


def subscription_payload(row: UserSubscriptionTable | None) -> dict[str, Any]:
    """Serialise a subscription row for API responses."""
    if row is None:
        return {
            "plan_id": "free",
            "status": "none",
            "current_period_start": None,
            "current_period_end": None,
            "cancel_at_period_end": False,
            "canceled_at": None,
            "last_payment_date": None,
        }
    return {
        "plan_id": row.plan_id,
        "status": row.status,
        "current_period_start": row.current_period_start.isoformat() if row.current_period_start else None,
        "current_period_end": row.current_period_end.isoformat() if row.current_period_end else None,
        "cancel_at_period_end": row.cancel_at_period_end,
        "canceled_at": row.canceled_at.isoformat() if row.canceled_at else None,
        "last_payment_date": row.last_payment_date.isoformat() if row.last_payment_date else None,
    }


class BillingService:
    """Stripe billing operations for a single user.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings containing Stripe configuration.
    user_id:
        The user performing billing operations.
    email:
        The user's email, pre-filled on Checkout for new customers.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        *,
        user_id: str,
        email: str | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._user_id = user_id
        self._email = email
        self._subscriptions = SubscriptionRepository(session, user_id)

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    async def get_subscription_info(self) -> dict[str, Any]:
        return subscription_payload(await self._subscriptions.get())

    async def create_checkout_session(
        self,
        plan_id: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict[str, str]:
        """Create a Stripe Checkout session for a paid plan.

        Raises
        ------
        ValueError
            If the plan cannot be purchased, no price is configured for
            it, or the user already has an active subscription.
        ExternalServiceError
            If Stripe rejects the request.
        """
        plan = resolve_plan_id(plan_id)
        if plan not in PURCHASABLE_PLANS or not plan_id:
            raise ValueError(f"Plan '{plan_id}' cannot be purchased")

        existing = await self._subscriptions.get()
        if existing is not None and existing.status == "active":
            raise ValueError("You already have an active subscription")

        price_id = self._settings.price_id_for(plan.value)
        if not price_id:
            raise ValueError(f"No Stripe price is configured for plan '{plan.value}'")

        app_url = self._settings.app_url.rstrip("/")
        metadata = {"userId": self._user_id, "planId": plan.value}
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{app_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url or f"{app_url}/pricing",
            "billing_address_collection": "required",
            "metadata": metadata,
            "subscription_data": {"metadata": dict(metadata)},
        }
        if existing is not None and existing.stripe_customer_id:
            params["customer"] = existing.stripe_customer_id
        elif self._email:
            params["customer_email"] = self._email

        stripe = self._get_stripe()
        try:
            checkout_session = stripe.checkout.Session.create(**params)
        except Exception as exc:
            logger.error("Stripe checkout creation failed for user %s: %s", self._user_id, exc)
            raise ExternalServiceError("stripe", "Checkout session could not be created") from exc

        logger.info("Checkout session %s created for user %s (%s)", checkout_session["id"], self._user_id, plan.value)
        return {"session_id": checkout_session["id"], "url": checkout_session["url"]}

    async def create_billing_portal_session(self, return_url: str | None = None) -> dict[str, str]:
        """Create a Stripe Customer Portal session for the user's customer."""
        row = await self._subscriptions.get()
        if row is None or not row.stripe_customer_id:
            raise NotFoundError("billing customer", self._user_id)

        stripe = self._get_stripe()
        try:
            portal = stripe.billing_portal.Session.create(
                customer=row.stripe_customer_id,
                return_url=return_url or f"{self._settings.app_url.rstrip('/')}/dashboard",
            )
        except Exception as exc:
            logger.error("Stripe portal session failed for user %s: %s", self._user_id, exc)
            raise ExternalServiceError("stripe", "Billing portal session could not be created") from exc
        return {"url": portal["url"]}

    async def cancel_at_period_end(self) -> dict[str, Any]:
        """Ask Stripe to cancel at period end and mirror the flag locally."""
        row = await self._subscriptions.get()
        if row is None or not row.stripe_subscription_id:
            raise NotFoundError("subscription", self._user_id)

        stripe = self._get_stripe()
        try:
            stripe.Subscription.modify(row.stripe_subscription_id, cancel_at_period_end=True)
        except Exception as exc:
            logger.error("Stripe cancellation failed for subscription %s: %s", row.stripe_subscription_id, exc)
            raise ExternalServiceError("stripe", "Subscription could not be canceled") from exc

        await self._subscriptions.update_for_user({"cancel_at_period_end": True})
        logger.info("Subscription %s set to cancel at period end", row.stripe_subscription_id)
        return subscription_payload(await self._subscriptions.get())
