"""Owner-side portal management: portals, content blocks, stats and files.

Every operation is scoped to the authenticated owner.  A portal owned
by someone else is reported as not found.
"""

from __future__ import annotations

import logging
from typing import Any

import bcrypt
from portlio_core.billing.entitlements import ACTION_CREATE_PORTAL, EntitlementEvaluator
from portlio_core.billing.features import Feature
from portlio_core.errors import NotFoundError, QuotaExceededError, ReorderConflictError
from portlio_core.portals.blocks import (
    DEFAULT_BLOCK_TITLES,
    BlockType,
    settings_to_json,
    validate_settings,
)
from portlio_core.portals.reorder import plan_move
from portlio_core.portals.slug import generate_slug
from portlio_core.portals.templates import BlockSeed, template_blocks
from portlio_core.state.repository import (
    AnalyticsRepository,
    ContentBlockRepository,
    PortalRepository,
    UploadedFileRepository,
)
from portlio_core.state.tables import ContentBlockTable, PortalTable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings
from portlio_api.middleware.prometheus import QUOTA_DENIALS_TOTAL
from portlio_api.services.entitlement_service import EntitlementService
from portlio_api.services.storage import LocalBlobStore

logger = logging.getLogger(__name__)


def hash_portal_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_portal_password(password: str | None, hashed: str | None) -> bool:
    """Return ``True`` when *password* matches, or the portal has none."""
    if not hashed:
        return True
    if not password:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def block_payload(row: ContentBlockTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "portal_id": row.portal_id,
        "type": row.block_type,
        "title": row.title,
        "content": row.content,
        "block_order": row.block_order,
        "settings": dict(row.settings or {}),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def portal_payload(row: PortalTable, blocks: list[ContentBlockTable] | None = None) -> dict[str, Any]:
    """Serialise a portal; the password hash is reduced to a flag."""
    payload: dict[str, Any] = {
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "slug": row.slug,
        "is_published": row.is_published,
        "has_password": bool(row.password_hash),
        "primary_color": row.primary_color,
        "template_id": row.template_id,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    if blocks is not None:
        payload["blocks"] = [block_payload(block) for block in blocks]
    return payload


def _seed_rows(seeds: tuple[BlockSeed, ...]) -> list[dict[str, Any]]:
    return [
        {
            "block_type": seed.block_type.value,
            "title": seed.title,
            "content": seed.content,
            "block_order": position,
            "settings": settings_to_json(validate_settings(seed.block_type, seed.settings)),
        }
        for position, seed in enumerate(seeds, start=1)
    ]


class PortalService:
    """Portal and content-block operations for one owner.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings (usage window for the entitlement gate).
    user_id:
        The portal owner.
    """

    def __init__(self, session: AsyncSession, settings: APISettings, user_id: str) -> None:
        self._session = session
        self._settings = settings
        self._user_id = user_id
        self._portals = PortalRepository(session, user_id)
        self._blocks = ContentBlockRepository(session)

    async def _entitlements(self) -> EntitlementEvaluator:
        return await EntitlementService(self._session, self._settings, self._user_id).load()

    async def _require_portal(self, portal_id: int) -> PortalTable:
        row = await self._portals.get(portal_id)
        if row is None:
            raise NotFoundError("portal", portal_id)
        return row

    def _check_feature(self, evaluator: EntitlementEvaluator, feature: Feature) -> None:
        allowed, reason = evaluator.can_use_feature(feature.value)
        if not allowed:
            raise PermissionError(f"{reason}. {evaluator.upgrade_message(feature.value)}")

    # ------------------------------------------------------------------
    # Portals
    # ------------------------------------------------------------------

    async def list_portals(self) -> list[dict[str, Any]]:
        return [portal_payload(row) for row in await self._portals.list_for_user()]

    async def get_portal(self, portal_id: int) -> dict[str, Any]:
        row = await self._require_portal(portal_id)
        return portal_payload(row, await self._blocks.list_for_portal(portal_id))

    async def create_portal(
        self,
        *,
        title: str,
        description: str = "",
        template_id: str | None = None,
        primary_color: str | None = None,
        password: str | None = None,
    ) -> dict[str, Any]:
        """Create a draft portal, seeding template blocks when requested.

        The plan gate runs before any write.  Template seeding is best
        effort: if it fails the portal is kept without blocks.

        Raises
        ------
        ValueError
            Empty title or unknown template.
        QuotaExceededError
            The owner is at the portal limit of their plan.
        PermissionError
            Branding or password protection on a plan without it.
        """
        title = (title or "").strip()
        if not title:
            raise ValueError("Portal title is required")
        seeds = template_blocks(template_id) if template_id else ()

        evaluator = await self._entitlements()
        allowed, reason = evaluator.can_use_feature(ACTION_CREATE_PORTAL)
        if not allowed:
            QUOTA_DENIALS_TOTAL.labels(metric="portals").inc()
            logger.info("Portal creation blocked for user %s: %s", self._user_id, reason)
            raise QuotaExceededError(
                "portals",
                evaluator.usage.portals_created,
                evaluator.limits.max_portals,
                evaluator.upgrade_message("unlimited portals"),
            )
        if primary_color:
            self._check_feature(evaluator, Feature.CUSTOM_BRANDING)
        if password:
            self._check_feature(evaluator, Feature.PASSWORD_PROTECTION)

        row = await self._portals.create(
            title=title,
            description=description or "",
            slug=generate_slug(title),
            template_id=template_id,
            primary_color=primary_color,
            password_hash=hash_portal_password(password) if password else None,
        )
        portal_id = row.id
        logger.info("Portal %s created for user %s (template=%s)", portal_id, self._user_id, template_id)

        if not seeds:
            return portal_payload(row, [])

        # The portal survives a seeding failure, so it is committed first.
        await self._session.commit()
        try:
            await self._blocks.create_many(portal_id, _seed_rows(seeds))
        except SQLAlchemyError:
            logger.exception("Seeding template '%s' into portal %s failed", template_id, portal_id)
            await self._session.rollback()
        row = await self._require_portal(portal_id)
        return portal_payload(row, await self._blocks.list_for_portal(portal_id))

    async def update_portal(self, portal_id: int, values: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update.

        ``password`` is hashed; an empty string removes protection.
        """
        row = await self._require_portal(portal_id)
        changes: dict[str, Any] = {}

        if "title" in values:
            title = (values["title"] or "").strip()
            if not title:
                raise ValueError("Portal title is required")
            changes["title"] = title
        if "description" in values:
            changes["description"] = values["description"] or ""

        gated = ("primary_color" in values and values["primary_color"]) or ("password" in values and values["password"])
        evaluator = await self._entitlements() if gated else None
        if "primary_color" in values:
            if values["primary_color"] and evaluator is not None:
                self._check_feature(evaluator, Feature.CUSTOM_BRANDING)
            changes["primary_color"] = values["primary_color"] or None
        if "password" in values:
            if values["password"] and evaluator is not None:
                self._check_feature(evaluator, Feature.PASSWORD_PROTECTION)
            changes["password_hash"] = hash_portal_password(values["password"]) if values["password"] else None

        if changes:
            row = await self._portals.update(portal_id, changes) or row
        return portal_payload(row)

    async def toggle_publish(self, portal_id: int) -> dict[str, Any]:
        row = await self._require_portal(portal_id)
        row = await self._portals.update(portal_id, {"is_published": not row.is_published}) or row
        logger.info("Portal %s is_published=%s", portal_id, row.is_published)
        return portal_payload(row)

    async def delete_portal(self, portal_id: int) -> None:
        if not await self._portals.delete(portal_id):
            raise NotFoundError("portal", portal_id)
        logger.info("Portal %s deleted by user %s", portal_id, self._user_id)

    # ------------------------------------------------------------------
    # Content blocks
    # ------------------------------------------------------------------

    async def list_blocks(self, portal_id: int) -> list[dict[str, Any]]:
        await self._require_portal(portal_id)
        return [block_payload(b) for b in await self._blocks.list_for_portal(portal_id)]

    async def add_block(
        self,
        portal_id: int,
        *,
        block_type: str,
        title: str | None = None,
        content: str = "",
        settings: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append a block with the type's default title and settings."""
        try:
            kind = BlockType(block_type)
        except ValueError:
            raise ValueError(f"Unknown block type '{block_type}'") from None
        block_settings = validate_settings(kind, settings)
        await self._require_portal(portal_id)

        order = await self._blocks.count_for_portal(portal_id) + 1
        row = await self._blocks.create(
            portal_id=portal_id,
            block_type=kind.value,
            title=(title or "").strip() or DEFAULT_BLOCK_TITLES[kind],
            content=content or "",
            block_order=order,
            settings=settings_to_json(block_settings),
        )
        return block_payload(row)

    async def update_block(self, portal_id: int, block_id: int, values: dict[str, Any]) -> dict[str, Any]:
        await self._require_portal(portal_id)
        row = await self._blocks.get(portal_id, block_id)
        if row is None:
            raise NotFoundError("block", block_id)

        changes: dict[str, Any] = {}
        if "title" in values:
            title = (values["title"] or "").strip()
            if not title:
                raise ValueError("Block title is required")
            changes["title"] = title
        if "content" in values:
            changes["content"] = values["content"] or ""
        if "settings" in values:
            changes["settings"] = settings_to_json(validate_settings(row.block_type, values["settings"]))

        if changes:
            row = await self._blocks.update(row, changes)
        return block_payload(row)

    async def delete_block(self, portal_id: int, block_id: int) -> list[dict[str, Any]]:
        """Delete a block and close the gap in the order sequence."""
        await self._require_portal(portal_id)
        row = await self._blocks.get(portal_id, block_id)
        if row is None:
            raise NotFoundError("block", block_id)
        await self._blocks.delete(row)

        remaining = await self._blocks.list_for_portal(portal_id)
        for position, block in enumerate(remaining, start=1):
            if block.block_order != position:
                await self._blocks.set_order(portal_id, block.id, position)
        return [block_payload(b) for b in await self._blocks.list_for_portal(portal_id)]

    async def reorder_blocks(self, portal_id: int, from_position: int, to_position: int) -> list[dict[str, Any]]:
        """Move the block at *from_position* to *to_position* (both 1-based).

        Each changed order is written separately.  If any write fails the
        session is rolled back and the stored order is returned inside
        a :class:`ReorderConflictError`.
        """
        await self._require_portal(portal_id)
        current = {b.id: b.block_order for b in await self._blocks.list_for_portal(portal_id)}
        changes = plan_move(current, from_position, to_position)

        try:
            for block_id, order in changes.items():
                if await self._blocks.set_order(portal_id, block_id, order) != 1:
                    raise LookupError(f"block {block_id} was not updated")
        except (SQLAlchemyError, LookupError) as exc:
            logger.warning("Reorder of portal %s failed, reloading: %s", portal_id, exc)
            await self._session.rollback()
            reloaded = await self._blocks.list_for_portal(portal_id)
            raise ReorderConflictError(portal_id, [block_payload(b) for b in reloaded]) from exc

        return [block_payload(b) for b in await self._blocks.list_for_portal(portal_id)]

    # ------------------------------------------------------------------
    # Stats and files
    # ------------------------------------------------------------------

    async def portal_stats(self, portal_id: int) -> dict[str, Any]:
        await self._require_portal(portal_id)
        stats = await AnalyticsRepository(self._session, self._user_id).portal_stats(portal_id)
        files = await UploadedFileRepository(self._session, self._user_id).count_for_portal(portal_id)
        last_visit = stats["last_visit"]
        return {
            "portal_id": portal_id,
            "total_views": stats["total_views"],
            "files_uploaded": files,
            "last_visit": last_visit.isoformat() if last_visit else None,
        }

    async def list_files(self, portal_id: int, store: LocalBlobStore) -> list[dict[str, Any]]:
        """List the portal's uploads straight from the blob store."""
        row = await self._require_portal(portal_id)
        entries = await store.list_objects(f"{row.slug}/")
        return [
            {
                "name": entry.name,
                "path": entry.path,
                "size": entry.size,
                "url": entry.public_url,
                "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
            }
            for entry in entries
        ]
