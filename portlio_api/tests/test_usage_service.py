"""Tests for portlio_api/services/usage_service.py"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from portlio_core.state.repository import AnalyticsRepository, PortalRepository, UploadedFileRepository
from sqlalchemy import text
from portlio_core.state.tables import PortalAnalyticsTable

from portlio_api.services.usage_service import UsageService

OWNER_ID = "user-1"


async def _portal(db_session, title: str = "Site") -> int:
    row = await PortalRepository(db_session, OWNER_ID).create(
        title=title,
        description="",
        slug=f"{title.lower()}-1",
        template_id=None,
        primary_color=None,
        password_hash=None,
    )
    return row.id


class TestUsageService:
    @pytest.mark.asyncio
    async def test_counts_portals_and_windowed_views(self, db_session, owner_id) -> None:
        portal_id = await _portal(db_session)
        analytics = AnalyticsRepository(db_session, OWNER_ID)
        await analytics.record(portal_id=portal_id, event_type="view")
        await analytics.record(portal_id=portal_id, event_type="payment_click")
        db_session.add(
            PortalAnalyticsTable(
                portal_id=portal_id,
                user_id=OWNER_ID,
                event_type="view",
                event_data={},
                created_at=datetime.now(UTC) - timedelta(days=31),
            )
        )
        await db_session.flush()

        usage = await UsageService(db_session, OWNER_ID, window_days=30).usage_for()

        assert usage.portals_created == 1
        assert usage.monthly_views == 1
        assert usage.files_uploaded == 0

    @pytest.mark.asyncio
    async def test_failing_count_degrades_to_zero(self, db_session, owner_id) -> None:
        portal_id = await _portal(db_session)
        await AnalyticsRepository(db_session, OWNER_ID).record(portal_id=portal_id, event_type="view")

        with patch.object(PortalRepository, "count", AsyncMock(side_effect=RuntimeError("db down"))):
            usage = await UsageService(db_session, OWNER_ID).usage_for()

        assert usage.portals_created == 0
        assert usage.monthly_views == 1

    @pytest.mark.asyncio
    async def test_failed_count_leaves_other_counts_and_session_usable(self, db_session, owner_id) -> None:
        portal_id = await _portal(db_session)
        await AnalyticsRepository(db_session, OWNER_ID).record(portal_id=portal_id, event_type="view")
        await UploadedFileRepository(db_session, OWNER_ID).create(
            portal_id=portal_id,
            block_id=None,
            filename="brief.pdf",
            file_size=10,
            mime_type="application/pdf",
            storage_path="site-1/brief.pdf",
            public_url="https://files.portlio.test/site-1/brief.pdf",
        )
        nested: list[bool] = []

        async def broken_count(*args, **kwargs) -> int:
            nested.append(db_session.in_nested_transaction())
            await db_session.execute(text("SELECT count(*) FROM no_such_table"))
            return 1

        with patch.object(PortalRepository, "count", broken_count):
            usage = await UsageService(db_session, OWNER_ID).usage_for()

        assert nested == [True]
        assert usage.portals_created == 0
        assert usage.monthly_views == 1
        assert usage.files_uploaded == 1

        await _portal(db_session, title="Second")
        assert await PortalRepository(db_session, OWNER_ID).count() == 2

    def test_window_start(self) -> None:
        now = datetime(2026, 3, 31, tzinfo=UTC)
        service = UsageService(None, OWNER_ID, window_days=30)  # type: ignore[arg-type]
        assert service.window_start(now) == datetime(2026, 3, 1, tzinfo=UTC)
