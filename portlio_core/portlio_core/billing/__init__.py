"""Plan catalog, feature gating and entitlement evaluation."""
