"""Identity: sign-up, sign-in, sign-out and auth-state listeners.

Listeners are registered per service instance.  The request dependency
that builds the service attaches the listeners that request needs (the
welcome email on sign-up), so no process-wide "current user" exists.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from portlio_core.state.repository import TokenRevocationRepository, UserRepository
from portlio_core.state.tables import UserTable
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.middleware.auth import mark_revoked
from portlio_api.security import TokenManager

logger = logging.getLogger(__name__)

SIGNED_UP = "SIGNED_UP"
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthStateListener = Callable[[str, dict[str, Any] | None], Awaitable[None] | None]


class IdentityError(Exception):
    """Raised on sign-up or sign-in failures."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def _user_payload(user: UserTable) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "user_metadata": dict(user.user_metadata or {}),
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


class IdentityService:
    """High-level authentication operations.

    Parameters
    ----------
    session:
        An async database session (caller manages the transaction).
    token_manager:
        Issues the access tokens returned by sign-up and sign-in.
    """

    def __init__(self, session: AsyncSession, token_manager: TokenManager) -> None:
        self._session = session
        self._tm = token_manager
        self._users = UserRepository(session)
        self._listeners: list[AuthStateListener] = []

    def on_auth_state_change(self, callback: AuthStateListener) -> Callable[[], None]:
        """Register *callback* for auth events; returns an unsubscribe function."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def _emit(self, event: str, user: dict[str, Any] | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, user)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed for event %s", event)

    def _session_payload(self, user: UserTable) -> dict[str, Any]:
        return {
            "access_token": self._tm.generate_token(user.id, user.email),
            "token_type": "bearer",
            "expires_in": self._tm.ttl_seconds,
            "user": _user_payload(user),
        }

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """Create an account and return a signed-in session."""
        email = email.lower().strip()
        if not email or "@" not in email:
            raise IdentityError("A valid email address is required.")
        if len(password) < 8:
            raise IdentityError("Password must be at least 8 characters.")

        if await self._users.get_by_email(email) is not None:
            raise IdentityError(
                "An account with this email already exists. Please log in instead.",
                status_code=409,
            )

        user = await self._users.create(email=email, password=password, metadata=metadata)
        logger.info("User signed up: user=%s", user.id)

        session = self._session_payload(user)
        await self._emit(SIGNED_UP, session["user"])
        return session

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        user = await self._users.verify_password(email, password)
        if user is None:
            raise IdentityError("Invalid email or password.", status_code=401)

        await self._users.update_last_login(user.id)
        logger.info("User signed in: user=%s", user.id)

        session = self._session_payload(user)
        await self._emit(SIGNED_IN, session["user"])
        return session

    async def sign_out(self, *, user_id: str, jti: str, expires_at: datetime | None = None) -> None:
        """Revoke the token identified by *jti*."""
        await TokenRevocationRepository(self._session).revoke(
            jti,
            user_id=user_id,
            reason="sign_out",
            expires_at=expires_at,
        )
        mark_revoked(jti)
        logger.info("User signed out: user=%s", user_id)
        await self._emit(SIGNED_OUT, None)

    async def get_current_user(self, user_id: str | None) -> dict[str, Any] | None:
        if user_id is None:
            return None
        user = await self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            return None
        return _user_payload(user)
