"""Entitlement evaluation over plan limits, usage and subscription state.

Everything in this module is pure: callers load the inputs (plan limits
from :mod:`portlio_core.billing.plans`, usage counts from the usage
service, the subscription row) and act on the boolean results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from portlio_core.billing.features import (
    Feature,
    feature_label,
    is_feature_enabled,
    parse_feature,
)
from portlio_core.billing.plans import (
    PlanId,
    PlanLimits,
    is_unlimited,
    limits_for,
    pricing_for,
    resolve_plan_id,
)


class UsageMetric(str, Enum):
    """Quota-bearing metrics."""

    PORTALS = "portals"
    VIEWS = "views"


# Usage-bound actions accepted by ``can_use_feature`` alongside features.
ACTION_CREATE_PORTAL = "create_portal"
ACTION_PORTAL_VIEWS = "portal_views"

# Subscription statuses that no longer confer the paid plan.
_INACTIVE_STATUSES: frozenset[str] = frozenset({"canceled", "unpaid", "incomplete_expired"})


@dataclass(frozen=True)
class UsageStats:
    """Current-period usage counters, always complete (never partial)."""

    portals_created: int = 0
    monthly_views: int = 0
    files_uploaded: int = 0


@dataclass(frozen=True)
class SubscriptionState:
    """The subset of a subscription row that affects entitlements."""

    plan_id: str
    status: str
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False


def effective_plan_id(
    profile_plan_id: str | None,
    subscription: SubscriptionState | None,
) -> PlanId:
    """Resolve the plan a user is entitled to right now.

    A live subscription wins over the profile plan; a canceled or unpaid
    subscription falls back to ``free``.  Users without a subscription
    row get whatever their profile says.
    """
    if subscription is None:
        return resolve_plan_id(profile_plan_id)
    if subscription.status in _INACTIVE_STATUSES:
        return PlanId.FREE
    return resolve_plan_id(subscription.plan_id)


def usage_percentage(used: int, limit: int) -> float:
    """Percentage of *limit* consumed by *used*, clamped to ``[0, 100]``.

    The unlimited sentinel always reports 0.
    """
    if is_unlimited(limit) or limit <= 0:
        return 0.0
    pct = 100.0 * max(used, 0) / limit
    return round(min(100.0, pct), 1)


class EntitlementEvaluator:
    """Answers "can this action proceed" for one user.

    Parameters
    ----------
    limits:
        Limits of the user's effective plan.
    usage:
        Current usage counters.
    subscription:
        The user's subscription, if any.  Informational only; the
        effective plan has already been folded into *limits*.
    """

    def __init__(
        self,
        limits: PlanLimits,
        usage: UsageStats,
        subscription: SubscriptionState | None = None,
    ) -> None:
        self.limits = limits
        self.usage = usage
        self.subscription = subscription

    @classmethod
    def for_plan(
        cls,
        plan_id: str | None,
        usage: UsageStats,
        subscription: SubscriptionState | None = None,
    ) -> EntitlementEvaluator:
        """Build an evaluator from a plan id, resolving its limits."""
        return cls(limits_for(plan_id), usage, subscription)

    @property
    def plan_id(self) -> PlanId:
        return self.limits.plan_id

    def can_create_portal(self) -> bool:
        return self.usage.portals_created < self.limits.max_portals

    def is_at_view_limit(self) -> bool:
        return self.usage.monthly_views >= self.limits.max_monthly_views

    def usage_percentage(self, metric: UsageMetric | str) -> float:
        metric = UsageMetric(metric)
        if metric is UsageMetric.PORTALS:
            return usage_percentage(self.usage.portals_created, self.limits.max_portals)
        return usage_percentage(self.usage.monthly_views, self.limits.max_monthly_views)

    def has_feature(self, name: str | Feature) -> bool:
        """Table lookup of *name* against the effective plan.

        Branding and analytics follow the plan limits directly; unknown
        feature names are never available.
        """
        feature = parse_feature(name)
        if feature is None:
            return False
        if feature is Feature.CUSTOM_BRANDING:
            return self.limits.has_custom_branding
        if feature is Feature.ANALYTICS:
            return self.limits.has_analytics
        return is_feature_enabled(self.limits.plan_id, feature)

    def can_use_feature(self, name: str) -> tuple[bool, str | None]:
        """Check a feature or usage-bound action.

        Returns
        -------
        tuple[bool, str | None]
            ``(allowed, reason)``; *reason* is ``None`` when allowed.
        """
        if name == ACTION_CREATE_PORTAL:
            if not self.can_create_portal():
                return False, f"Portal limit reached ({self.limits.max_portals})"
            return True, None
        if name == ACTION_PORTAL_VIEWS:
            if self.is_at_view_limit():
                return False, f"Monthly view limit reached ({self.limits.max_monthly_views})"
            return True, None

        if not self.has_feature(name):
            feature = parse_feature(name)
            label = feature_label(feature) if feature is not None else name.replace("_", " ")
            return False, f"{label} is available in paid plans"
        return True, None

    def upgrade_message(self, name: str) -> str:
        target = PlanId.PROFESSIONAL if self.limits.plan_id is PlanId.FREE else PlanId.AGENCY
        pricing = pricing_for(target)
        return f"Upgrade to {pricing.display_name} (${pricing.monthly_price_usd}/mo) to unlock {name.replace('_', ' ')}"

    def summary(self) -> dict[str, object]:
        """Usage versus limits, as returned by the usage endpoint."""
        return {
            "plan_id": self.limits.plan_id.value,
            "portals_created": self.usage.portals_created,
            "max_portals": self.limits.max_portals,
            "portals_unlimited": is_unlimited(self.limits.max_portals),
            "portals_percentage": self.usage_percentage(UsageMetric.PORTALS),
            "monthly_views": self.usage.monthly_views,
            "max_monthly_views": self.limits.max_monthly_views,
            "views_unlimited": is_unlimited(self.limits.max_monthly_views),
            "views_percentage": self.usage_percentage(UsageMetric.VIEWS),
            "files_uploaded": self.usage.files_uploaded,
            "can_create_portal": self.can_create_portal(),
            "at_view_limit": self.is_at_view_limit(),
        }
