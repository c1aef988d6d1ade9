"""Load the inputs of an :class:`EntitlementEvaluator` for one user."""

from __future__ import annotations

from portlio_core.billing.entitlements import (
    EntitlementEvaluator,
    SubscriptionState,
    UsageStats,
    effective_plan_id,
)
from portlio_core.state.repository import SubscriptionRepository, UserProfileRepository
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings
from portlio_api.services.usage_service import UsageService


class EntitlementService:
    """Builds an evaluator from the profile, subscription and usage counts."""

    def __init__(self, session: AsyncSession, settings: APISettings, user_id: str) -> None:
        self._session = session
        self._settings = settings
        self._user_id = user_id

    async def subscription_state(self) -> SubscriptionState | None:
        row = await SubscriptionRepository(self._session, self._user_id).get()
        if row is None:
            return None
        return SubscriptionState(
            plan_id=row.plan_id,
            status=row.status,
            current_period_end=row.current_period_end,
            cancel_at_period_end=row.cancel_at_period_end,
        )

    async def usage(self) -> UsageStats:
        return await UsageService(
            self._session,
            self._user_id,
            window_days=self._settings.usage_window_days,
        ).usage_for()

    async def load(self) -> EntitlementEvaluator:
        profile = await UserProfileRepository(self._session, self._user_id).get()
        subscription = await self.subscription_state()
        plan_id = effective_plan_id(profile.plan_id if profile is not None else None, subscription)
        return EntitlementEvaluator.for_plan(plan_id, await self.usage(), subscription)
