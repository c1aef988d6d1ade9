"""Profile endpoints: upsert-on-read profile and onboarding."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from portlio_core.state.tables import UserProfileTable
from pydantic import BaseModel, Field

from portlio_api.dependencies import EmailDep, SessionDep, SettingsDep, UserIdDep
from portlio_api.schemas import ProfileResponse
from portlio_api.services.profile_service import ProfileService, is_trial_active, trial_days_left

router = APIRouter(prefix="/profile", tags=["profile"])


class OnboardingRequest(BaseModel):
    role: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=256)
    team_size: str | None = Field(default=None, max_length=32)
    goals: list[str] = Field(default_factory=list)


def _profile_payload(profile: UserProfileTable) -> dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "email": profile.email,
        "full_name": profile.full_name,
        "plan_id": profile.plan_id,
        "trial_ends_at": profile.trial_ends_at.isoformat() if profile.trial_ends_at else None,
        "trial_active": is_trial_active(profile.trial_ends_at),
        "trial_days_left": trial_days_left(profile.trial_ends_at),
        "role": profile.role,
        "company": profile.company,
        "team_size": profile.team_size,
        "goals": list(profile.goals or []),
        "onboarding_completed": profile.onboarding_completed,
    }


@router.get("", response_model=ProfileResponse)
async def get_profile(
    session: SessionDep,
    settings: SettingsDep,
    user_id: UserIdDep,
    email: EmailDep,
) -> dict[str, Any]:
    """Return the caller's profile, creating it on first access."""
    profile = await ProfileService(session, settings, user_id).get_or_create(email=email)
    return _profile_payload(profile)


@router.post("/onboarding", response_model=ProfileResponse)
async def complete_onboarding(
    body: OnboardingRequest,
    session: SessionDep,
    settings: SettingsDep,
    user_id: UserIdDep,
    email: EmailDep,
) -> dict[str, Any]:
    profile = await ProfileService(session, settings, user_id).complete_onboarding(
        email=email,
        role=body.role,
        company=body.company,
        team_size=body.team_size,
        goals=body.goals,
    )
    return _profile_payload(profile)
