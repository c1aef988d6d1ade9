"""FastAPI dependency injection for settings, database sessions, and the blob store."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from portlio_core.billing.features import Feature, feature_label, get_required_plan
from portlio_core.billing.plans import pricing_for
from portlio_core.state.database import create_session_factory, get_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portlio_api.config import APISettings, load_api_settings
from portlio_api.security import TokenManager
from portlio_api.services.storage import LocalBlobStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = create_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components that operate outside FastAPI's dependency injection
    (e.g. Starlette middleware) and need direct session access.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for the duration of one request.

    The session commits on clean exit and rolls back on exception.
    Repositories only flush, so this is the single commit point of a
    request.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Authenticated identity
# ---------------------------------------------------------------------------


def get_current_user_id(request: Request) -> str:
    """Return the user id placed on ``request.state`` by the auth middleware."""
    user_id = getattr(request.state, "sub", None)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def get_current_email(request: Request) -> str | None:
    return getattr(request.state, "email", None)


UserIdDep = Annotated[str, Depends(get_current_user_id)]
EmailDep = Annotated[str | None, Depends(get_current_email)]


def get_token_manager(settings: SettingsDep) -> TokenManager:
    return TokenManager.from_settings(settings)


TokenManagerDep = Annotated[TokenManager, Depends(get_token_manager)]

# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------

_blob_store: LocalBlobStore | None = None


def init_blob_store(settings: APISettings) -> LocalBlobStore:
    """Create the process-wide blob store for portal uploads."""
    global _blob_store  # noqa: PLW0603
    _blob_store = LocalBlobStore(
        base_path=settings.blob_storage_path,
        public_base_url=settings.blob_public_base_url,
        bucket=settings.upload_bucket,
    )
    return _blob_store


def get_blob_store(settings: SettingsDep) -> LocalBlobStore:
    if _blob_store is None:
        return init_blob_store(settings)
    return _blob_store


BlobStoreDep = Annotated[LocalBlobStore, Depends(get_blob_store)]

# ---------------------------------------------------------------------------
# Feature gating
# ---------------------------------------------------------------------------


def require_feature(feature: Feature) -> Callable[..., object]:
    """Return a FastAPI dependency that enforces a plan feature gate.

    Loads the caller's entitlements and verifies *feature* is available
    on their effective plan.  Raises ``HTTPException(403)`` with an
    upgrade message otherwise.

    Usage::

        @router.get("/portals/{portal_id}/stats")
        async def portal_stats(
            ...,
            _gate: None = Depends(require_feature(Feature.ANALYTICS)),
        ):
            ...
    """

    async def _gate(session: SessionDep, settings: SettingsDep, user_id: UserIdDep) -> None:
        from portlio_api.services.entitlement_service import EntitlementService

        evaluator = await EntitlementService(session, settings, user_id).load()
        allowed, reason = evaluator.can_use_feature(feature.value)
        if not allowed:
            required = pricing_for(get_required_plan(feature))
            logger.info(
                "Feature gate denied: user=%s feature=%s plan=%s",
                user_id,
                feature.value,
                evaluator.plan_id.value,
            )
            raise HTTPException(
                status_code=403,
                detail={
                    "detail": reason,
                    "feature": feature.value,
                    "required_plan": required.display_name,
                    "upgrade": evaluator.upgrade_message(feature_label(feature).lower()),
                },
            )

    return _gate
