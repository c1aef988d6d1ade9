"""Billing endpoints: plans, subscription, usage, Stripe sessions and webhooks."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from portlio_core.billing.features import get_plan_features
from portlio_core.billing.plans import PLAN_CATALOG, PLAN_PRICING, PURCHASABLE_PLANS
from pydantic import BaseModel, Field

from portlio_api.config import APISettings
from portlio_api.dependencies import EmailDep, SessionDep, SettingsDep, UserIdDep
from portlio_api.middleware.prometheus import WEBHOOK_EVENTS_TOTAL
from portlio_api.schemas import (
    CheckoutSessionResponse,
    PlansResponse,
    PortalSessionResponse,
    SubscriptionResponse,
    UsageResponse,
)
from portlio_api.services.billing_service import BillingService
from portlio_api.services.entitlement_service import EntitlementService
from portlio_api.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    """Request body for ``POST /billing/checkout``."""

    plan_id: str = Field(..., description="professional or agency.")
    success_url: str | None = Field(default=None, description="Defaults to the dashboard.")
    cancel_url: str | None = Field(default=None, description="Defaults to the pricing page.")


class PortalRequest(BaseModel):
    """Request body for ``POST /billing/portal``."""

    return_url: str | None = None


def _require_billing(settings: APISettings) -> None:
    if not settings.billing_enabled:
        raise HTTPException(status_code=404, detail="Billing is not enabled for this installation.")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=PlansResponse)
async def get_billing_plans() -> dict[str, Any]:
    """Return the plan catalog with prices, limits and features."""
    plans = []
    for plan_id, limits in PLAN_CATALOG.items():
        pricing = PLAN_PRICING[plan_id]
        plans.append(
            {
                "plan_id": plan_id.value,
                "display_name": pricing.display_name,
                "monthly_price_usd": pricing.monthly_price_usd,
                "support": pricing.support,
                "purchasable": plan_id in PURCHASABLE_PLANS,
                "limits": {
                    "max_portals": limits.max_portals,
                    "max_monthly_views": limits.max_monthly_views,
                    "has_custom_branding": limits.has_custom_branding,
                    "has_analytics": limits.has_analytics,
                    "max_upload_bytes": limits.max_upload_bytes,
                },
                "features": sorted(feature.value for feature in get_plan_features(plan_id)),
            }
        )
    return {"plans": plans}


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(session: SessionDep, settings: SettingsDep, user_id: UserIdDep) -> dict[str, Any]:
    info = await BillingService(session, settings, user_id=user_id).get_subscription_info()
    info["billing_enabled"] = settings.billing_enabled
    return info


@router.get("/usage", response_model=UsageResponse)
async def get_usage(session: SessionDep, settings: SettingsDep, user_id: UserIdDep) -> dict[str, Any]:
    """Return usage against the limits of the caller's effective plan."""
    evaluator = await EntitlementService(session, settings, user_id).load()
    return evaluator.summary()


@router.post("/checkout", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    session: SessionDep,
    settings: SettingsDep,
    user_id: UserIdDep,
    email: EmailDep,
) -> dict[str, str]:
    """Create a Stripe Checkout session; the client redirects to ``url``."""
    _require_billing(settings)
    service = BillingService(session, settings, user_id=user_id, email=email)
    return await service.create_checkout_session(body.plan_id, body.success_url, body.cancel_url)


@router.post("/portal", response_model=PortalSessionResponse)
async def create_portal_session(
    body: PortalRequest,
    session: SessionDep,
    settings: SettingsDep,
    user_id: UserIdDep,
) -> dict[str, str]:
    """Create a Stripe Customer Portal session for subscription management."""
    _require_billing(settings)
    return await BillingService(session, settings, user_id=user_id).create_billing_portal_session(body.return_url)


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(session: SessionDep, settings: SettingsDep, user_id: UserIdDep) -> dict[str, Any]:
    """Cancel the subscription at the end of the current period."""
    _require_billing(settings)
    info = await BillingService(session, settings, user_id=user_id).cancel_at_period_end()
    info["billing_enabled"] = True
    return info


@router.post("/webhooks", response_model=None)
async def stripe_webhook(request: Request, session: SessionDep, settings: SettingsDep) -> Any:
    """Handle incoming Stripe webhook events.

    The signature is verified before dispatch.  Unknown event types are
    acknowledged.  A handler failure rolls back and returns 500 so that
    Stripe redelivers the event.
    """
    if not settings.billing_enabled:
        return {"status": "billing_disabled"}

    body = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    try:
        import stripe

        stripe.api_key = settings.stripe_secret_key.get_secret_value()
        stripe.Webhook.construct_event(
            payload=body,
            sig_header=sig_header,
            secret=settings.stripe_webhook_secret.get_secret_value(),
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except Exception as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid signature")

    event: dict[str, Any] = json.loads(body)
    event_type = event.get("type", "unknown")
    try:
        result = await SubscriptionService(session, settings).handle_event(event)
    except Exception:
        logger.exception("Stripe webhook %s (%s) failed", event.get("id"), event_type)
        await session.rollback()
        WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome="failed").inc()
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome=result["status"]).inc()
    return {"received": True}
