"""Visitor-facing portal access: viewing, click events and file uploads.

Visitors are anonymous.  Quotas and upload ceilings are those of the
portal owner's effective plan.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from portlio_core.errors import NotFoundError, PortalPasswordError, QuotaExceededError
from portlio_core.portals.blocks import BlockType, validate_settings
from portlio_core.state.repository import (
    AnalyticsRepository,
    ContentBlockRepository,
    PortalRepository,
    UploadedFileRepository,
)
from portlio_core.state.tables import PortalTable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings
from portlio_api.middleware.prometheus import QUOTA_DENIALS_TOTAL
from portlio_api.services.entitlement_service import EntitlementService
from portlio_api.services.portal_service import check_portal_password, portal_payload
from portlio_api.services.storage import LocalBlobStore, sanitize_filename

logger = logging.getLogger(__name__)

CLICK_EVENT_TYPES: frozenset[str] = frozenset({"payment_click", "link_click"})


@dataclass(frozen=True)
class VisitorInfo:
    """Request metadata stored with analytics events."""

    ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None


def is_accepted_type(filename: str, mime_type: str | None, accepted_types: list[str]) -> bool:
    """Match an upload against a block's ``accepted_types``.

    Entries are ``*``, a file extension (``.pdf``), a MIME wildcard
    (``image/*``) or an exact MIME type.
    """
    suffix = PurePosixPath(filename).suffix.lower()
    mime = (mime_type or "").lower()
    for accepted in accepted_types:
        accepted = accepted.strip().lower()
        if accepted == "*":
            return True
        if accepted.startswith("."):
            if suffix == accepted:
                return True
        elif accepted.endswith("/*"):
            if mime.startswith(accepted[:-1]):
                return True
        elif mime == accepted:
            return True
    return False


def _format_bytes(size: int) -> str:
    return f"{size // (1024 * 1024)} MB"


class PublicPortalService:
    """Operations a visitor can perform on a published portal."""

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings
        self._blocks = ContentBlockRepository(session)

    async def _published(self, slug: str, password: str | None) -> PortalTable:
        portal = await PortalRepository(self._session).get_by_slug(slug)
        if portal is None or not portal.is_published:
            raise NotFoundError("portal", slug)
        if not check_portal_password(password, portal.password_hash):
            raise PortalPasswordError(slug)
        return portal

    async def view_portal(self, slug: str, *, password: str | None, visitor: VisitorInfo) -> dict[str, Any]:
        """Return the portal with its ordered blocks and record a view.

        Raises
        ------
        NotFoundError
            Unknown or unpublished slug.
        PortalPasswordError
            Missing or wrong password.
        QuotaExceededError
            The owner has reached the monthly view limit.
        """
        portal = await self._published(slug, password)

        evaluator = await EntitlementService(self._session, self._settings, portal.user_id).load()
        if evaluator.is_at_view_limit():
            QUOTA_DENIALS_TOTAL.labels(metric="views").inc()
            logger.info("Portal %s hidden: owner %s is at the view limit", slug, portal.user_id)
            raise QuotaExceededError(
                "views",
                evaluator.usage.monthly_views,
                evaluator.limits.max_monthly_views,
                evaluator.upgrade_message("unlimited views"),
            )

        await AnalyticsRepository(self._session, portal.user_id).record(
            portal_id=portal.id,
            event_type="view",
            visitor_ip=visitor.ip,
            user_agent=visitor.user_agent,
            referrer=visitor.referrer,
        )
        payload = portal_payload(portal, await self._blocks.list_for_portal(portal.id))
        payload.pop("template_id", None)
        return payload

    async def record_click(
        self,
        slug: str,
        *,
        event_type: str,
        block_id: int | None,
        password: str | None,
        visitor: VisitorInfo,
    ) -> None:
        if event_type not in CLICK_EVENT_TYPES:
            raise ValueError(f"Unsupported event type '{event_type}'")
        portal = await self._published(slug, password)
        if block_id is not None and await self._blocks.get(portal.id, block_id) is None:
            raise NotFoundError("block", block_id)
        await AnalyticsRepository(self._session, portal.user_id).record(
            portal_id=portal.id,
            event_type=event_type,
            event_data={"block_id": block_id} if block_id is not None else {},
            visitor_ip=visitor.ip,
            user_agent=visitor.user_agent,
            referrer=visitor.referrer,
        )

    async def upload_file(
        self,
        slug: str,
        block_id: int,
        *,
        filename: str,
        mime_type: str | None,
        read: Callable[[int], Awaitable[bytes]],
        password: str | None,
        store: LocalBlobStore,
        size: int | None = None,
        visitor: VisitorInfo | None = None,
    ) -> dict[str, Any]:
        """Validate and store one upload for an upload block.

        *read* returns at most the requested number of bytes of the file.
        It is called once, for one byte more than the owner's plan
        ceiling, so an oversized body is never buffered in full.  A
        declared *size* above the ceiling is rejected without reading.
        All checks run before the blob store is called.  Once the blob is
        stored, recording the ``uploaded_files`` row is best effort: a
        failure is logged as an orphaned blob and the upload still
        succeeds.
        """
        portal = await self._published(slug, password)
        block = await self._blocks.get(portal.id, block_id)
        if block is None:
            raise NotFoundError("block", block_id)
        if block.block_type != BlockType.UPLOAD.value:
            raise ValueError("Files can only be uploaded to upload blocks")

        settings = validate_settings(BlockType.UPLOAD, block.settings)
        files = UploadedFileRepository(self._session, portal.user_id)
        if await files.count_for_block(portal.id, block_id) >= settings.max_files:
            raise ValueError(f"This block accepts at most {settings.max_files} files")
        if not is_accepted_type(filename, mime_type, settings.accepted_types):
            raise ValueError(f"File type not accepted; allowed: {', '.join(settings.accepted_types)}")
        evaluator = await EntitlementService(self._session, self._settings, portal.user_id).load()
        ceiling = evaluator.limits.max_upload_bytes
        too_large = f"File exceeds the {_format_bytes(ceiling)} upload limit"
        if size is not None and size > ceiling:
            raise ValueError(too_large)
        data = await read(ceiling + 1)
        if len(data) > ceiling:
            raise ValueError(too_large)
        if not data:
            raise ValueError("Uploaded file is empty")

        safe_name = sanitize_filename(filename)
        path = f"{portal.slug}/block-{block_id}/{int(time.time() * 1000)}-{safe_name}"
        public_url = await store.put_object(path, data)

        visitor = visitor or VisitorInfo()
        try:
            await files.create(
                portal_id=portal.id,
                block_id=block_id,
                filename=filename,
                file_size=len(data),
                mime_type=mime_type,
                storage_path=path,
                public_url=public_url,
            )
            await AnalyticsRepository(self._session, portal.user_id).record(
                portal_id=portal.id,
                event_type="file_upload",
                event_data={"block_id": block_id, "filename": filename, "size": len(data)},
                visitor_ip=visitor.ip,
                user_agent=visitor.user_agent,
                referrer=visitor.referrer,
            )
        except SQLAlchemyError:
            logger.exception("Orphaned blob %s/%s: file record could not be saved", store.bucket, path)
            await self._session.rollback()

        return {
            "name": safe_name,
            "path": path,
            "size": len(data),
            "mime_type": mime_type,
            "url": public_url,
        }
