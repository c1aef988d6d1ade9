"""Plan-based feature gating.

Features are grouped by the cheapest plan that unlocks them.  Higher
plans include every lower-plan feature automatically.
"""

from __future__ import annotations

from enum import Enum

from portlio_core.billing.plans import PlanId, resolve_plan_id


class Feature(str, Enum):
    """Product features that can be gated by plan."""

    # All plans
    FILE_UPLOADS = "file_uploads"
    BASIC_TEMPLATES = "basic_templates"

    # Paid plans
    CUSTOM_BRANDING = "custom_branding"
    ANALYTICS = "analytics"
    PASSWORD_PROTECTION = "password_protection"
    CUSTOM_DOMAINS = "custom_domains"
    PRIORITY_SUPPORT = "priority_support"

    # Agency only
    API_ACCESS = "api_access"
    TEAM_COLLABORATION = "team_collaboration"
    WHITE_LABEL = "white_label"


_FREE_FEATURES: frozenset[Feature] = frozenset(
    {
        Feature.FILE_UPLOADS,
        Feature.BASIC_TEMPLATES,
    }
)

_PROFESSIONAL_FEATURES: frozenset[Feature] = _FREE_FEATURES | frozenset(
    {
        Feature.CUSTOM_BRANDING,
        Feature.ANALYTICS,
        Feature.PASSWORD_PROTECTION,
        Feature.CUSTOM_DOMAINS,
        Feature.PRIORITY_SUPPORT,
    }
)

_AGENCY_FEATURES: frozenset[Feature] = _PROFESSIONAL_FEATURES | frozenset(
    {
        Feature.API_ACCESS,
        Feature.TEAM_COLLABORATION,
        Feature.WHITE_LABEL,
    }
)

PLAN_FEATURES: dict[PlanId, frozenset[Feature]] = {
    PlanId.FREE: _FREE_FEATURES,
    PlanId.PROFESSIONAL: _PROFESSIONAL_FEATURES,
    PlanId.AGENCY: _AGENCY_FEATURES,
}


def parse_feature(name: str | Feature) -> Feature | None:
    """Return the :class:`Feature` for *name*, or ``None`` if unknown."""
    if isinstance(name, Feature):
        return name
    try:
        return Feature(name.strip().lower())
    except ValueError:
        return None


def is_feature_enabled(plan_id: str | PlanId | None, feature: str | Feature) -> bool:
    """Check whether a feature is enabled for the given plan.

    Parameters
    ----------
    plan_id:
        The plan identifier.  Unknown ids are treated as ``free``.
    feature:
        The feature to check.  Unknown feature names are never enabled.

    Returns
    -------
    bool
        ``True`` if the feature is included in the plan's entitlements.
    """
    resolved = parse_feature(feature)
    if resolved is None:
        return False
    return resolved in PLAN_FEATURES[resolve_plan_id(plan_id)]


def get_plan_features(plan_id: str | PlanId | None) -> frozenset[Feature]:
    """Return the set of features available on a plan."""
    return PLAN_FEATURES[resolve_plan_id(plan_id)]


def get_required_plan(feature: Feature) -> PlanId:
    """Return the cheapest plan that unlocks *feature*.

    Parameters
    ----------
    feature:
        The feature to look up.

    Returns
    -------
    PlanId
        The lowest plan whose feature set contains *feature*.
    """
    for plan in (PlanId.FREE, PlanId.PROFESSIONAL, PlanId.AGENCY):
        if feature in PLAN_FEATURES[plan]:
            return plan
    return PlanId.AGENCY


def feature_label(feature: Feature) -> str:
    """Human-readable feature name, e.g. ``"Custom branding"``."""
    text = feature.value.replace("_", " ")
    return text[:1].upper() + text[1:]
