"""Usage aggregation: portals created, views in the usage window, files uploaded.

Each counter is an independent query run inside its own savepoint.  A
failing query is logged and counted as zero, and only its savepoint is
rolled back, so the other counters and any later writes in the same
transaction still run.  Callers always receive a complete
:class:`UsageStats`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from portlio_core.billing.entitlements import UsageStats
from portlio_core.state.repository import (
    AnalyticsRepository,
    PortalRepository,
    UploadedFileRepository,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


class UsageService:
    """Compute current usage for one user.

    Parameters
    ----------
    session:
        Active database session.
    user_id:
        The user whose usage is counted.
    window_days:
        Length of the trailing window for monthly views.
    """

    def __init__(self, session: AsyncSession, user_id: str, *, window_days: int = DEFAULT_WINDOW_DAYS) -> None:
        self._session = session
        self._user_id = user_id
        self._window = timedelta(days=window_days)

    def window_start(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) - self._window

    async def _safe_count(self, metric: str, query: Callable[[], Awaitable[int]]) -> int:
        try:
            async with self._session.begin_nested():
                return await query()
        except Exception as exc:
            logger.warning("Usage count '%s' failed for user %s: %s", metric, self._user_id, exc)
            return 0

    async def usage_for(self) -> UsageStats:
        """Return the user's usage counters; never raises."""
        since = self.window_start()

        portals = await self._safe_count(
            "portals",
            PortalRepository(self._session, self._user_id).count,
        )
        views = await self._safe_count(
            "views",
            lambda: AnalyticsRepository(self._session, self._user_id).count_events("view", since=since),
        )
        files = await self._safe_count(
            "files",
            UploadedFileRepository(self._session, self._user_id).count,
        )
        return UsageStats(portals_created=portals, monthly_views=views, files_uploaded=files)
