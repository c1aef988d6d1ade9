"""Tests for the entitlement evaluator."""

from __future__ import annotations

import pytest

from portlio_core.billing.entitlements import (
    EntitlementEvaluator,
    SubscriptionState,
    UsageMetric,
    UsageStats,
    effective_plan_id,
    usage_percentage,
)
from portlio_core.billing.plans import UNLIMITED, PlanId


def _evaluator(plan_id: str, portals: int = 0, views: int = 0) -> EntitlementEvaluator:
    return EntitlementEvaluator.for_plan(plan_id, UsageStats(portals_created=portals, monthly_views=views))


class TestCanCreatePortal:
    """Portal creation is blocked exactly at the limit."""

    @pytest.mark.parametrize(
        ("portals", "expected"),
        [(0, True), (1, True), (2, False), (3, False)],
    )
    def test_free_plan_boundary(self, portals: int, expected: bool) -> None:
        assert _evaluator("free", portals=portals).can_create_portal() is expected

    def test_paid_plan_effectively_unlimited(self) -> None:
        assert _evaluator("professional", portals=10_000).can_create_portal()

    def test_reason_names_the_limit(self) -> None:
        allowed, reason = _evaluator("free", portals=2).can_use_feature("create_portal")
        assert allowed is False
        assert reason == "Portal limit reached (2)"


class TestViewLimit:
    def test_below_limit(self) -> None:
        assert not _evaluator("free", views=49).is_at_view_limit()

    def test_at_limit(self) -> None:
        assert _evaluator("free", views=50).is_at_view_limit()

    def test_reason_names_the_limit(self) -> None:
        allowed, reason = _evaluator("free", views=51).can_use_feature("portal_views")
        assert allowed is False
        assert reason == "Monthly view limit reached (50)"

    def test_views_allowed_under_limit(self) -> None:
        assert _evaluator("free", views=3).can_use_feature("portal_views") == (True, None)


class TestUsagePercentage:
    """Percentages always land in [0, 100]."""

    @pytest.mark.parametrize(
        ("used", "limit", "expected"),
        [
            (0, 2, 0.0),
            (1, 2, 50.0),
            (2, 2, 100.0),
            (7, 2, 100.0),
            (-3, 2, 0.0),
            (1, 3, 33.3),
            (500_000, UNLIMITED, 0.0),
            (UNLIMITED * 2, UNLIMITED, 0.0),
            (5, 0, 0.0),
        ],
    )
    def test_bounds(self, used: int, limit: int, expected: float) -> None:
        pct = usage_percentage(used, limit)
        assert pct == expected
        assert 0.0 <= pct <= 100.0

    def test_evaluator_metrics(self) -> None:
        evaluator = _evaluator("free", portals=1, views=25)
        assert evaluator.usage_percentage(UsageMetric.PORTALS) == 50.0
        assert evaluator.usage_percentage("views") == 50.0

    def test_unlimited_plan_reports_zero(self) -> None:
        evaluator = _evaluator("agency", portals=40, views=90_000)
        assert evaluator.usage_percentage(UsageMetric.PORTALS) == 0.0
        assert evaluator.usage_percentage(UsageMetric.VIEWS) == 0.0


class TestHasFeature:
    def test_branding_follows_plan_limits(self) -> None:
        assert not _evaluator("free").has_feature("custom_branding")
        assert _evaluator("professional").has_feature("custom_branding")

    def test_api_access_agency_only(self) -> None:
        assert not _evaluator("professional").has_feature("api_access")
        assert _evaluator("agency").has_feature("api_access")

    def test_file_uploads_everywhere(self) -> None:
        for plan in ("free", "professional", "agency"):
            assert _evaluator(plan).has_feature("file_uploads")

    def test_unknown_feature(self) -> None:
        assert not _evaluator("agency").has_feature("teleportation")

    def test_locked_feature_reason(self) -> None:
        allowed, reason = _evaluator("free").can_use_feature("password_protection")
        assert allowed is False
        assert reason == "Password protection is available in paid plans"


class TestUpgradeMessage:
    def test_free_upgrades_to_professional(self) -> None:
        message = _evaluator("free").upgrade_message("custom_branding")
        assert message == "Upgrade to Professional ($29/mo) to unlock custom branding"

    def test_professional_upgrades_to_agency(self) -> None:
        message = _evaluator("professional").upgrade_message("white_label")
        assert message == "Upgrade to Agency ($79/mo) to unlock white label"


class TestEffectivePlan:
    def test_no_subscription_uses_profile(self) -> None:
        assert effective_plan_id("professional", None) is PlanId.PROFESSIONAL

    def test_active_subscription_wins(self) -> None:
        sub = SubscriptionState(plan_id="agency", status="active")
        assert effective_plan_id("free", sub) is PlanId.AGENCY

    def test_past_due_keeps_plan(self) -> None:
        sub = SubscriptionState(plan_id="professional", status="past_due")
        assert effective_plan_id("free", sub) is PlanId.PROFESSIONAL

    @pytest.mark.parametrize("status", ["canceled", "unpaid", "incomplete_expired"])
    def test_inactive_subscription_falls_back_to_free(self, status: str) -> None:
        sub = SubscriptionState(plan_id="agency", status=status)
        assert effective_plan_id("agency", sub) is PlanId.FREE


class TestSummary:
    def test_summary_fields(self) -> None:
        summary = _evaluator("free", portals=2, views=10).summary()
        assert summary["plan_id"] == "free"
        assert summary["can_create_portal"] is False
        assert summary["portals_percentage"] == 100.0
        assert summary["views_percentage"] == 20.0
        assert summary["portals_unlimited"] is False
