"""Static plan catalog.

Three plans control quotas and feature access:

* **free** (displayed as *Starter*) -- 2 portals, 50 views per month.
* **professional** (alias ``pro``) -- unlimited portals and views,
  custom branding and analytics.
* **agency** -- everything in Professional plus team features.

"Unlimited" is represented by the finite sentinel :data:`UNLIMITED`.
Arithmetic on quotas must go through :func:`is_unlimited` so that a
percentage against the sentinel is never reported as a tiny non-zero
number.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

UNLIMITED: int = 999_999

_MB = 1024 * 1024


class PlanId(str, Enum):
    """Recognised plan identifiers."""

    FREE = "free"
    PROFESSIONAL = "professional"
    AGENCY = "agency"


@dataclass(frozen=True)
class PlanLimits:
    """Entitlement limits for a single plan."""

    plan_id: PlanId
    max_portals: int
    max_monthly_views: int
    has_custom_branding: bool
    has_analytics: bool
    max_upload_bytes: int


@dataclass(frozen=True)
class PlanPricing:
    """Display name and list price of a plan."""

    display_name: str
    monthly_price_usd: int
    support: str


PLAN_CATALOG: dict[PlanId, PlanLimits] = {
    PlanId.FREE: PlanLimits(
        plan_id=PlanId.FREE,
        max_portals=2,
        max_monthly_views=50,
        has_custom_branding=False,
        has_analytics=False,
        max_upload_bytes=10 * _MB,
    ),
    PlanId.PROFESSIONAL: PlanLimits(
        plan_id=PlanId.PROFESSIONAL,
        max_portals=UNLIMITED,
        max_monthly_views=UNLIMITED,
        has_custom_branding=True,
        has_analytics=True,
        max_upload_bytes=100 * _MB,
    ),
    PlanId.AGENCY: PlanLimits(
        plan_id=PlanId.AGENCY,
        max_portals=UNLIMITED,
        max_monthly_views=UNLIMITED,
        has_custom_branding=True,
        has_analytics=True,
        max_upload_bytes=500 * _MB,
    ),
}

PLAN_PRICING: dict[PlanId, PlanPricing] = {
    PlanId.FREE: PlanPricing(display_name="Starter", monthly_price_usd=0, support="email"),
    PlanId.PROFESSIONAL: PlanPricing(display_name="Professional", monthly_price_usd=29, support="priority"),
    PlanId.AGENCY: PlanPricing(display_name="Agency", monthly_price_usd=79, support="dedicated"),
}

# Plans that can be bought through Stripe Checkout.
PURCHASABLE_PLANS: frozenset[PlanId] = frozenset({PlanId.PROFESSIONAL, PlanId.AGENCY})

_PLAN_ALIASES: dict[str, PlanId] = {
    "pro": PlanId.PROFESSIONAL,
    "starter": PlanId.FREE,
}


def resolve_plan_id(plan_id: PlanId | str | None) -> PlanId:
    """Map a stored or user-supplied plan id to a :class:`PlanId`.

    Matching is case-insensitive and accepts the ``pro`` alias.  Missing
    or unknown ids resolve to :attr:`PlanId.FREE`; this never raises.
    """
    if isinstance(plan_id, PlanId):
        return plan_id
    if not plan_id:
        return PlanId.FREE
    key = plan_id.strip().lower()
    if key in _PLAN_ALIASES:
        return _PLAN_ALIASES[key]
    try:
        return PlanId(key)
    except ValueError:
        return PlanId.FREE


def limits_for(plan_id: str | None) -> PlanLimits:
    """Return the limits for *plan_id*, falling back to the free plan."""
    return PLAN_CATALOG[resolve_plan_id(plan_id)]


def pricing_for(plan_id: str | None) -> PlanPricing:
    """Return display name and price for *plan_id*."""
    return PLAN_PRICING[resolve_plan_id(plan_id)]


def is_unlimited(limit: int) -> bool:
    """Return ``True`` if *limit* is the unlimited sentinel (or above it)."""
    return limit >= UNLIMITED
