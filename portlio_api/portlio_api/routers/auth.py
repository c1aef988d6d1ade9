"""Authentication endpoints: signup, login, logout and the current user.

Signup and login bypass the auth middleware.  Logout revokes the jti of
the presenting token.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field

from portlio_api.dependencies import SessionDep, SettingsDep, TokenManagerDep, UserIdDep
from portlio_api.schemas import SessionResponse, UserResponse
from portlio_api.services.email_service import EmailService, EmailType
from portlio_api.services.identity_service import SIGNED_UP, IdentityError, IdentityService
from portlio_api.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for user registration."""

    email: EmailStr = Field(..., description="Email address.")
    password: str = Field(..., min_length=8, description="Password (min 8 characters).")
    full_name: str | None = Field(default=None, max_length=256, description="Display name.")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=SessionResponse, status_code=201)
async def signup(
    body: SignupRequest,
    session: SessionDep,
    settings: SettingsDep,
    token_manager: TokenManagerDep,
) -> dict[str, Any]:
    """Create an account, its profile, and send the welcome email."""
    identity = IdentityService(session, token_manager)

    async def _on_signed_up(event: str, user: dict[str, Any] | None) -> None:
        if event != SIGNED_UP or user is None:
            return
        await ProfileService(session, settings, user["id"]).get_or_create(
            email=user["email"],
            full_name=body.full_name,
        )
        await EmailService(session, settings).send_best_effort(
            EmailType.WELCOME,
            user["email"],
            {"name": body.full_name or user["email"].split("@")[0]},
        )

    identity.on_auth_state_change(_on_signed_up)
    metadata = {"full_name": body.full_name} if body.full_name else {}
    try:
        return await identity.sign_up(body.email, body.password, metadata)
    except IdentityError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post("/login", response_model=SessionResponse)
async def login(body: LoginRequest, session: SessionDep, token_manager: TokenManagerDep) -> dict[str, Any]:
    try:
        return await IdentityService(session, token_manager).sign_in_with_password(body.email, body.password)
    except IdentityError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    session: SessionDep,
    token_manager: TokenManagerDep,
    user_id: UserIdDep,
) -> None:
    """Revoke the access token used for this request."""
    await IdentityService(session, token_manager).sign_out(
        user_id=user_id,
        jti=request.state.jti,
        expires_at=getattr(request.state, "token_expires_at", None),
    )


@router.get("/me", response_model=UserResponse)
async def me(session: SessionDep, token_manager: TokenManagerDep, user_id: UserIdDep) -> dict[str, Any]:
    user = await IdentityService(session, token_manager).get_current_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return user
