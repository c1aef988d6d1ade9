"""Authentication middleware that extracts and validates access tokens.

Extracts ``Authorization: Bearer <token>`` from every request, validates
via :class:`TokenManager`, and populates ``request.state`` with ``sub``
(user id), ``email`` and ``jti``.

Endpoints listed in ``_PUBLIC_PATHS`` or under ``_PUBLIC_PREFIXES``
bypass authentication.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from portlio_api.config import APISettings
from portlio_api.security import TokenManager

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Revocation cache
# ---------------------------------------------------------------------------


class _RevocationCache:
    """TTL cache for token revocation lookups.

    Caches both revoked and not-revoked results for a short TTL.  When
    the database is unreachable and no cached result exists, the caller
    fails closed.

    Parameters
    ----------
    ttl_seconds:
        How long each cache entry remains valid.
    max_entries:
        Hard cap on cache size; stale entries are purged when reached.
    """

    def __init__(self, ttl_seconds: float = 30.0, max_entries: int = 10_000) -> None:
        self._cache: dict[str, tuple[bool, float]] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries

    def get(self, token_jti: str) -> bool | None:
        """Return the cached revocation status, or ``None`` on miss/expiry."""
        entry = self._cache.get(token_jti)
        if entry is None:
            return None
        is_revoked, cached_at = entry
        if time.monotonic() - cached_at > self._ttl:
            del self._cache[token_jti]
            return None
        return is_revoked

    def set(self, token_jti: str, is_revoked: bool) -> None:
        if len(self._cache) >= self._max_entries:
            self.cleanup()
        self._cache[token_jti] = (is_revoked, time.monotonic())

    def cleanup(self) -> None:
        now = time.monotonic()
        stale = [k for k, (_, t) in self._cache.items() if now - t > self._ttl]
        for k in stale:
            del self._cache[k]


_revocation_cache = _RevocationCache()

# Revocation checker: injected at startup via init_revocation_checker().
_check_revocation: Callable[[str], Any] | None = None


def mark_revoked(jti: str) -> None:
    """Record a sign-out in the local cache so it takes effect immediately."""
    _revocation_cache.set(jti, True)


def init_revocation_checker(session_factory: Any) -> None:
    """Wire the token revocation checker into the auth middleware.

    The checker queries ``token_revocations`` for the jti behind a short
    TTL cache.  On database failure a cached result is used if present;
    otherwise the request is rejected.
    """
    global _check_revocation  # noqa: PLW0603

    async def _checker(jti: str) -> bool:
        cached = _revocation_cache.get(jti)
        if cached is not None:
            return cached

        from portlio_core.state.repository import TokenRevocationRepository

        try:
            async with session_factory() as session:
                is_revoked = await TokenRevocationRepository(session).is_revoked(jti)
                _revocation_cache.set(jti, is_revoked)
                return is_revoked
        except Exception:
            stale = _revocation_cache.get(jti)
            if stale is not None:
                logger.warning(
                    "Revocation DB check failed for jti=%s; using cached result (is_revoked=%s)",
                    jti,
                    stale,
                )
                return stale
            logger.error(
                "Revocation DB check failed for jti=%s and no cached result available; rejecting request",
                jti,
                exc_info=True,
            )
            return True

    _check_revocation = _checker


async def purge_expired_revocations(session_factory: Any) -> int:
    """Delete revocation rows for tokens that have already expired.

    An expired token is rejected by signature validation, so its
    revocation entry no longer does anything.
    """
    from portlio_core.state.repository import TokenRevocationRepository

    async with session_factory() as session:
        purged = await TokenRevocationRepository(session).cleanup_expired()
        await session.commit()
    if purged:
        logger.info("Purged %d expired token revocations", purged)
    return purged


# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/metrics",
        "/api/v1/auth/signup",
        "/api/v1/auth/login",
        "/api/v1/billing/webhooks",
        "/api/v1/billing/plans",
    }
)

# Prefixes that skip auth: docs assets and visitor-facing portal routes.
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
    "/api/v1/public/",
)


def _is_public_path(path: str) -> bool:
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Skips public paths.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Validates the token and checks it has not been revoked.
    4. Stores ``sub``, ``email`` and ``jti`` on ``request.state``.
    5. Returns a 401/403 JSON response on failure.
    """

    def __init__(self, app: Any, settings: APISettings | None = None) -> None:
        super().__init__(app)
        if settings is None:
            from portlio_api.dependencies import get_settings

            settings = get_settings()
        self._token_manager = TokenManager.from_settings(settings)
        logger.info("AuthenticationMiddleware initialised (algorithm=%s)", settings.jwt_algorithm)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or _is_public_path(path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing Authorization header"},
            )

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = self._token_manager.validate_token(parts[1])
        except PermissionError as exc:
            error_msg = str(exc)
            # Expired tokens get 403 so clients can tell them from garbage.
            if "expired" in error_msg.lower():
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Token has expired"},
                )
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid token: {error_msg}"},
            )

        if _check_revocation is not None and await _check_revocation(claims.jti):
            return JSONResponse(
                status_code=401,
                content={"detail": "Token has been revoked"},
            )

        request.state.sub = claims.sub
        request.state.email = claims.email
        request.state.jti = claims.jti
        request.state.token_expires_at = claims.expires_at

        return await call_next(request)
