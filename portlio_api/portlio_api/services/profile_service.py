"""User profiles: lazy creation, trial window and onboarding."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime, timedelta

from portlio_core.state.repository import UserEventRepository, UserProfileRepository
from portlio_core.state.tables import UserProfileTable
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings

logger = logging.getLogger(__name__)


def trial_days_left(trial_ends_at: datetime | None, now: datetime | None = None) -> int:
    """Whole days until the trial ends, rounded up and never negative."""
    if trial_ends_at is None:
        return 0
    remaining = (trial_ends_at - (now or datetime.now(UTC))).total_seconds()
    return max(0, math.ceil(remaining / 86_400))


def is_trial_active(trial_ends_at: datetime | None, now: datetime | None = None) -> bool:
    if trial_ends_at is None:
        return False
    return trial_ends_at > (now or datetime.now(UTC))


class ProfileService:
    """Read and update the profile of one user.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        Supplies the trial length.
    user_id:
        Authenticated user.
    """

    def __init__(self, session: AsyncSession, settings: APISettings, user_id: str) -> None:
        self._session = session
        self._settings = settings
        self._user_id = user_id
        self._profiles = UserProfileRepository(session, user_id)

    async def get_or_create(self, *, email: str | None, full_name: str | None = None) -> UserProfileTable:
        """Return the profile, creating a ``free`` one on first access.

        The first creation records a ``signup`` user event.
        """
        trial_ends_at = datetime.now(UTC) + timedelta(days=self._settings.trial_days)
        profile, created = await self._profiles.get_or_create(
            email=email,
            full_name=full_name,
            trial_ends_at=trial_ends_at,
        )
        if created:
            await UserEventRepository(self._session, self._user_id).record(
                "signup",
                {"plan_id": profile.plan_id, "trial_ends_at": trial_ends_at.isoformat()},
            )
            logger.info("Created profile for user %s (trial ends %s)", self._user_id, trial_ends_at.isoformat())
        return profile

    async def complete_onboarding(
        self,
        *,
        email: str | None,
        role: str | None,
        company: str | None,
        team_size: str | None,
        goals: list[str],
    ) -> UserProfileTable:
        await self.get_or_create(email=email)
        profile = await self._profiles.complete_onboarding(
            role=role,
            company=company,
            team_size=team_size,
            goals=goals,
        )
        if profile is None:
            raise RuntimeError(f"Profile for user {self._user_id} vanished during onboarding")
        await UserEventRepository(self._session, self._user_id).record(
            "onboarding_completed",
            {"role": role, "team_size": team_size, "goals": list(goals)},
        )
        return profile
