"""Shared Pydantic response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI specification.  Request bodies live next to the router
that accepts them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Auth and profile schemas
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    id: str
    email: str
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    last_login_at: str | None = None


class SessionResponse(BaseModel):
    """Returned by sign-up and sign-in."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ProfileResponse(BaseModel):
    user_id: str
    email: str | None = None
    full_name: str | None = None
    plan_id: str
    trial_ends_at: str | None = None
    trial_active: bool
    trial_days_left: int
    role: str | None = None
    company: str | None = None
    team_size: str | None = None
    goals: list[str] = Field(default_factory=list)
    onboarding_completed: bool = False


# ---------------------------------------------------------------------------
# Portal schemas
# ---------------------------------------------------------------------------


class BlockResponse(BaseModel):
    id: int
    portal_id: int
    type: str
    title: str
    content: str
    block_order: int
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None


class PortalResponse(BaseModel):
    """A portal; ``blocks`` is present on detail responses only."""

    id: int
    title: str
    description: str
    slug: str
    is_published: bool
    has_password: bool
    primary_color: str | None = None
    template_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    blocks: list[BlockResponse] | None = None


class PortalStatsResponse(BaseModel):
    portal_id: int
    total_views: int
    files_uploaded: int
    last_visit: str | None = None


class FileEntryResponse(BaseModel):
    name: str
    path: str
    size: int
    url: str
    updated_at: str | None = None


class UploadResponse(BaseModel):
    name: str
    path: str
    size: int
    mime_type: str | None = None
    url: str


# ---------------------------------------------------------------------------
# Billing schemas
# ---------------------------------------------------------------------------


class SubscriptionResponse(BaseModel):
    """Subscription information for the authenticated user."""

    plan_id: str
    status: str
    current_period_start: str | None = None
    current_period_end: str | None = None
    cancel_at_period_end: bool = False
    canceled_at: str | None = None
    last_payment_date: str | None = None
    billing_enabled: bool = True


class CheckoutSessionResponse(BaseModel):
    """Stripe Checkout session."""

    session_id: str
    url: str


class PortalSessionResponse(BaseModel):
    """Stripe Customer Portal session URL."""

    url: str


class UsageResponse(BaseModel):
    """Usage against the limits of the effective plan."""

    plan_id: str
    portals_created: int
    max_portals: int
    portals_unlimited: bool
    portals_percentage: float
    monthly_views: int
    max_monthly_views: int
    views_unlimited: bool
    views_percentage: float
    files_uploaded: int
    can_create_portal: bool
    at_view_limit: bool


class PlanLimitsResponse(BaseModel):
    max_portals: int
    max_monthly_views: int
    has_custom_branding: bool
    has_analytics: bool
    max_upload_bytes: int


class PlanResponse(BaseModel):
    """A plan returned by ``GET /billing/plans``."""

    plan_id: str
    display_name: str
    monthly_price_usd: int
    support: str
    purchasable: bool
    limits: PlanLimitsResponse
    features: list[str]


class PlansResponse(BaseModel):
    plans: list[PlanResponse]
