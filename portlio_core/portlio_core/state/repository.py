"""Repository classes providing CRUD access to the Portlio state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()``; the API request dependency does so once per request.

User-scoped repositories also take the owning ``user_id`` and never read
or write rows belonging to another user.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_core.state.tables import (
    ContentBlockTable,
    EmailLogTable,
    PortalAnalyticsTable,
    PortalTable,
    TokenRevocationTable,
    UploadedFileTable,
    UserEventTable,
    UserProfileTable,
    UserSubscriptionTable,
    UserTable,
)

logger = logging.getLogger(__name__)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Returns the execution result; ``rowcount`` is 1 when a row was
    inserted and 0 when it already existed.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------


class UserRepository:
    """CRUD operations for the ``users`` table.

    Password hashing uses bcrypt; the plaintext is never persisted.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _hash_password(plaintext: str) -> str:
        """Hash a plaintext password with bcrypt."""
        import bcrypt

        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def _verify_password(plaintext: str, hashed: str) -> bool:
        """Verify a plaintext password against a bcrypt hash."""
        import bcrypt

        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))

    async def create(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
    ) -> UserTable:
        """Create a new user with a hashed password."""
        row = UserTable(
            id=uuid.uuid4().hex,
            email=email.lower().strip(),
            password_hash=self._hash_password(password),
            user_metadata=dict(metadata or {}),
            is_active=True,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_email(self, email: str) -> UserTable | None:
        """Fetch a user by email address (case-insensitive)."""
        stmt = select(UserTable).where(UserTable.email == email.lower().strip())
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> UserTable | None:
        stmt = select(UserTable).where(UserTable.id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def verify_password(self, email: str, password: str) -> UserTable | None:
        """Validate credentials and return the user if correct.

        Returns ``None`` if the email is unknown, the account is inactive,
        or the password does not match.
        """
        user = await self.get_by_email(email)
        if user is None or not user.is_active:
            # Keep timing uniform for unknown emails.
            self._hash_password("dummy-password-for-timing")
            return None
        if not self._verify_password(password, user.password_hash):
            return None
        return user

    async def update_last_login(self, user_id: str) -> None:
        """Record the current time as the user's last login."""
        stmt = update(UserTable).where(UserTable.id == user_id).values(last_login_at=datetime.now(UTC))
        await self._session.execute(stmt)
        await self._session.flush()


# ---------------------------------------------------------------------------
# TokenRevocationRepository
# ---------------------------------------------------------------------------


class TokenRevocationRepository:
    """CRUD operations for the ``token_revocations`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def revoke(
        self,
        jti: str,
        user_id: str | None = None,
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        """Record a token revocation by jti. Idempotent via upsert."""
        await _dialect_upsert(
            self._session,
            TokenRevocationTable,
            values={
                "jti": jti,
                "user_id": user_id,
                "reason": reason,
                "expires_at": expires_at,
                "revoked_at": datetime.now(UTC),
            },
            index_elements=["jti"],
            update_columns=["reason", "revoked_at"],
        )
        await self._session.flush()

    async def is_revoked(self, jti: str) -> bool:
        stmt = select(func.count()).where(TokenRevocationTable.jti == jti)
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def cleanup_expired(self) -> int:
        """Remove revocation entries whose tokens have already expired.

        Returns the number of records deleted.
        """
        stmt = delete(TokenRevocationTable).where(
            TokenRevocationTable.expires_at.is_not(None),
            TokenRevocationTable.expires_at < datetime.now(UTC),
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# UserProfileRepository
# ---------------------------------------------------------------------------


class UserProfileRepository:
    """Per-user profile rows with upsert-on-read semantics."""

    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._session = session
        self._user_id = user_id

    async def get(self) -> UserProfileTable | None:
        stmt = (
            select(UserProfileTable)
            .where(UserProfileTable.user_id == self._user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        *,
        email: str | None,
        full_name: str | None,
        trial_ends_at: datetime,
    ) -> tuple[UserProfileTable, bool]:
        """Return the profile, inserting a fresh ``free`` one if absent.

        Concurrent first reads are safe: the insert is ``ON CONFLICT DO
        NOTHING`` and the row is re-read afterwards.

        Returns
        -------
        tuple[UserProfileTable, bool]
            The profile and whether this call created it.
        """
        now = datetime.now(UTC)
        result = await _dialect_upsert_nothing(
            self._session,
            UserProfileTable,
            values={
                "user_id": self._user_id,
                "email": email,
                "full_name": full_name,
                "plan_id": "free",
                "trial_ends_at": trial_ends_at,
                "goals": [],
                "onboarding_completed": False,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id"],
        )
        await self._session.flush()
        created = bool(result.rowcount)
        profile = await self.get()
        if profile is None:
            raise RuntimeError(f"Profile for user {self._user_id} vanished after upsert")
        return profile, created

    async def set_plan(self, plan_id: str) -> int:
        """Set the profile plan.  Returns the number of rows updated."""
        stmt = (
            update(UserProfileTable)
            .where(UserProfileTable.user_id == self._user_id)
            .values(plan_id=plan_id, updated_at=datetime.now(UTC))
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def complete_onboarding(
        self,
        *,
        role: str | None,
        company: str | None,
        team_size: str | None,
        goals: list[str],
    ) -> UserProfileTable | None:
        now = datetime.now(UTC)
        stmt = (
            update(UserProfileTable)
            .where(UserProfileTable.user_id == self._user_id)
            .values(
                role=role,
                company=company,
                team_size=team_size,
                goals=list(goals),
                onboarding_completed=True,
                onboarding_completed_at=now,
                updated_at=now,
            )
        )
        await self._session.execute(stmt)
        await self._session.flush()
        return await self.get()


class UserEventRepository:
    """Append-only product events for one user."""

    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._session = session
        self._user_id = user_id

    async def record(self, event_type: str, event_data: dict[str, Any] | None = None) -> UserEventTable:
        row = UserEventTable(
            user_id=self._user_id,
            event_type=event_type,
            event_data=dict(event_data or {}),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def count(self, event_type: str) -> int:
        stmt = select(func.count()).where(
            UserEventTable.user_id == self._user_id,
            UserEventTable.event_type == event_type,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# SubscriptionRepository
# ---------------------------------------------------------------------------


class SubscriptionRepository:
    """Access to ``user_subscriptions``.

    Webhook handlers address rows by Stripe customer id and construct the
    repository without a user; user-facing reads pass the ``user_id``.
    """

    def __init__(self, session: AsyncSession, user_id: str | None = None) -> None:
        self._session = session
        self._user_id = user_id

    def _require_user(self) -> str:
        if self._user_id is None:
            raise ValueError("SubscriptionRepository requires a user_id for this operation")
        return self._user_id

    async def get(self) -> UserSubscriptionTable | None:
        """Return the subscription of the bound user, if any."""
        stmt = (
            select(UserSubscriptionTable)
            .where(UserSubscriptionTable.user_id == self._require_user())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_customer(self, stripe_customer_id: str) -> UserSubscriptionTable | None:
        stmt = (
            select(UserSubscriptionTable)
            .where(UserSubscriptionTable.stripe_customer_id == stripe_customer_id)
            .order_by(UserSubscriptionTable.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_for_user(
        self,
        *,
        plan_id: str,
        status: str,
        stripe_customer_id: str | None,
        stripe_subscription_id: str | None,
        current_period_start: datetime,
        current_period_end: datetime,
        event_at: datetime | None = None,
    ) -> UserSubscriptionTable | None:
        """Insert or overwrite the bound user's subscription.

        Keyed on ``user_id`` so that replays of the same checkout never
        produce a second row.  When the stored row has already applied an
        event newer than *event_at*, nothing is written and ``None`` is
        returned.  ``last_event_at`` never moves backwards.
        """
        user_id = self._require_user()
        existing = await self.get()
        last_event_at = existing.last_event_at if existing is not None else None
        if event_at is not None and last_event_at is not None and last_event_at > event_at:
            return None
        if event_at is not None:
            last_event_at = event_at
        now = datetime.now(UTC)
        values = {
            "user_id": user_id,
            "plan_id": plan_id,
            "status": status,
            "stripe_customer_id": stripe_customer_id,
            "stripe_subscription_id": stripe_subscription_id,
            "current_period_start": current_period_start,
            "current_period_end": current_period_end,
            "cancel_at_period_end": False,
            "canceled_at": None,
            "last_event_at": last_event_at,
            "created_at": now,
            "updated_at": now,
        }
        await _dialect_upsert(
            self._session,
            UserSubscriptionTable,
            values=values,
            index_elements=["user_id"],
            update_columns=[
                "plan_id",
                "status",
                "stripe_customer_id",
                "stripe_subscription_id",
                "current_period_start",
                "current_period_end",
                "cancel_at_period_end",
                "canceled_at",
                "last_event_at",
                "updated_at",
            ],
        )
        await self._session.flush()
        row = await self.get()
        if row is None:
            raise RuntimeError(f"Subscription for user {user_id} vanished after upsert")
        return row

    async def update_by_customer(
        self,
        stripe_customer_id: str,
        values: dict[str, Any],
        *,
        event_at: datetime | None = None,
    ) -> int:
        """Overwrite columns on the subscription matched by customer id.

        When *event_at* is given, rows whose ``last_event_at`` is newer
        are left untouched and ``last_event_at`` is advanced on the rows
        that are updated.

        Returns
        -------
        int
            Number of rows updated.
        """
        patch = dict(values)
        patch["updated_at"] = datetime.now(UTC)
        stmt = update(UserSubscriptionTable).where(UserSubscriptionTable.stripe_customer_id == stripe_customer_id)
        if event_at is not None:
            stmt = stmt.where(
                or_(
                    UserSubscriptionTable.last_event_at.is_(None),
                    UserSubscriptionTable.last_event_at <= event_at,
                )
            )
            patch["last_event_at"] = event_at
        result = await self._session.execute(stmt.values(**patch).execution_options(synchronize_session=False))
        await self._session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def update_for_user(self, values: dict[str, Any]) -> int:
        patch = dict(values)
        patch["updated_at"] = datetime.now(UTC)
        stmt = (
            update(UserSubscriptionTable)
            .where(UserSubscriptionTable.user_id == self._require_user())
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# PortalRepository
# ---------------------------------------------------------------------------


class PortalRepository:
    """Owner-scoped CRUD for ``portals``.

    Lookups by slug are public (not owner-scoped) and used by the
    visitor-facing routes.
    """

    def __init__(self, session: AsyncSession, user_id: str | None = None) -> None:
        self._session = session
        self._user_id = user_id

    async def create(
        self,
        *,
        title: str,
        description: str,
        slug: str,
        template_id: str | None = None,
        primary_color: str | None = None,
        password_hash: str | None = None,
    ) -> PortalTable:
        row = PortalTable(
            user_id=self._user_id,
            title=title,
            description=description,
            slug=slug,
            is_published=False,
            template_id=template_id,
            primary_color=primary_color,
            password_hash=password_hash,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, portal_id: int) -> PortalTable | None:
        """Fetch a portal owned by the bound user."""
        stmt = select(PortalTable).where(
            PortalTable.id == portal_id,
            PortalTable.user_id == self._user_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> PortalTable | None:
        stmt = select(PortalTable).where(PortalTable.slug == slug)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self) -> list[PortalTable]:
        stmt = (
            select(PortalTable)
            .where(PortalTable.user_id == self._user_id)
            .order_by(PortalTable.created_at.desc(), PortalTable.id.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(PortalTable).where(PortalTable.user_id == self._user_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def update(self, portal_id: int, values: dict[str, Any]) -> PortalTable | None:
        row = await self.get(portal_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        await self._session.flush()
        return row

    async def delete(self, portal_id: int) -> bool:
        """Delete a portal and its content blocks.

        Returns ``False`` if the portal does not exist or is not owned by
        the bound user.
        """
        row = await self.get(portal_id)
        if row is None:
            return False
        await self._session.execute(delete(ContentBlockTable).where(ContentBlockTable.portal_id == portal_id))
        await self._session.delete(row)
        await self._session.flush()
        return True


# ---------------------------------------------------------------------------
# ContentBlockRepository
# ---------------------------------------------------------------------------


class ContentBlockRepository:
    """CRUD for ``content_blocks``.

    Ownership is checked by the caller through :class:`PortalRepository`
    before any block of a portal is touched.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_portal(self, portal_id: int) -> list[ContentBlockTable]:
        stmt = (
            select(ContentBlockTable)
            .where(ContentBlockTable.portal_id == portal_id)
            .order_by(ContentBlockTable.block_order, ContentBlockTable.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_portal(self, portal_id: int) -> int:
        stmt = select(func.count()).where(ContentBlockTable.portal_id == portal_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def get(self, portal_id: int, block_id: int) -> ContentBlockTable | None:
        stmt = select(ContentBlockTable).where(
            ContentBlockTable.portal_id == portal_id,
            ContentBlockTable.id == block_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        portal_id: int,
        block_type: str,
        title: str,
        content: str,
        block_order: int,
        settings: dict[str, Any],
    ) -> ContentBlockTable:
        row = ContentBlockTable(
            portal_id=portal_id,
            block_type=block_type,
            title=title,
            content=content,
            block_order=block_order,
            settings=settings,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def create_many(self, portal_id: int, rows: Iterable[dict[str, Any]]) -> list[ContentBlockTable]:
        """Insert several blocks in one flush."""
        created = [ContentBlockTable(portal_id=portal_id, **values) for values in rows]
        self._session.add_all(created)
        await self._session.flush()
        return created

    async def update(self, row: ContentBlockTable, values: dict[str, Any]) -> ContentBlockTable:
        for key, value in values.items():
            setattr(row, key, value)
        await self._session.flush()
        return row

    async def set_order(self, portal_id: int, block_id: int, block_order: int) -> int:
        """Write a single block's order.  Returns rows updated (0 or 1)."""
        stmt = (
            update(ContentBlockTable)
            .where(
                ContentBlockTable.portal_id == portal_id,
                ContentBlockTable.id == block_id,
            )
            .values(block_order=block_order, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def delete(self, row: ContentBlockTable) -> None:
        await self._session.delete(row)
        await self._session.flush()


# ---------------------------------------------------------------------------
# AnalyticsRepository
# ---------------------------------------------------------------------------


class AnalyticsRepository:
    """Append-only writes and counts over ``portal_analytics``.

    ``user_id`` is the owner of the portals whose events are read or
    written.
    """

    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._session = session
        self._user_id = user_id

    async def record(
        self,
        *,
        portal_id: int,
        event_type: str,
        event_data: dict[str, Any] | None = None,
        visitor_ip: str | None = None,
        user_agent: str | None = None,
        referrer: str | None = None,
    ) -> PortalAnalyticsTable:
        row = PortalAnalyticsTable(
            portal_id=portal_id,
            user_id=self._user_id,
            event_type=event_type,
            event_data=dict(event_data or {}),
            visitor_ip=visitor_ip,
            user_agent=user_agent,
            referrer=referrer,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def count_events(self, event_type: str, since: datetime | None = None) -> int:
        """Count the owner's events of *event_type*, optionally since a cutoff."""
        stmt = select(func.count()).where(
            PortalAnalyticsTable.user_id == self._user_id,
            PortalAnalyticsTable.event_type == event_type,
        )
        if since is not None:
            stmt = stmt.where(PortalAnalyticsTable.created_at >= since)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def portal_stats(self, portal_id: int) -> dict[str, Any]:
        """Return total views and last visit time for one portal."""
        stmt = select(
            func.count(PortalAnalyticsTable.id),
            func.max(PortalAnalyticsTable.created_at),
        ).where(
            PortalAnalyticsTable.user_id == self._user_id,
            PortalAnalyticsTable.portal_id == portal_id,
            PortalAnalyticsTable.event_type == "view",
        )
        result = await self._session.execute(stmt)
        total, last = result.one()
        if isinstance(last, str):
            last = datetime.fromisoformat(last)
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return {"total_views": int(total or 0), "last_visit": last}


# ---------------------------------------------------------------------------
# UploadedFileRepository
# ---------------------------------------------------------------------------


class UploadedFileRepository:
    """Metadata rows for files in the blob store, scoped to the portal owner."""

    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._session = session
        self._user_id = user_id

    async def create(
        self,
        *,
        portal_id: int,
        block_id: int | None,
        filename: str,
        file_size: int,
        mime_type: str | None,
        storage_path: str,
        public_url: str,
    ) -> UploadedFileTable:
        row = UploadedFileTable(
            portal_id=portal_id,
            block_id=block_id,
            uploaded_by=self._user_id,
            filename=filename,
            file_size=file_size,
            mime_type=mime_type,
            storage_path=storage_path,
            public_url=public_url,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def count(self) -> int:
        stmt = select(func.count()).where(UploadedFileTable.uploaded_by == self._user_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def count_for_portal(self, portal_id: int) -> int:
        stmt = select(func.count()).where(
            UploadedFileTable.uploaded_by == self._user_id,
            UploadedFileTable.portal_id == portal_id,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def count_for_block(self, portal_id: int, block_id: int) -> int:
        stmt = select(func.count()).where(
            UploadedFileTable.uploaded_by == self._user_id,
            UploadedFileTable.portal_id == portal_id,
            UploadedFileTable.block_id == block_id,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_for_portal(self, portal_id: int) -> list[UploadedFileTable]:
        stmt = (
            select(UploadedFileTable)
            .where(
                UploadedFileTable.uploaded_by == self._user_id,
                UploadedFileTable.portal_id == portal_id,
            )
            .order_by(UploadedFileTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# EmailLogRepository
# ---------------------------------------------------------------------------


class EmailLogRepository:
    """Append-only log of transactional email dispatches."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        *,
        email_type: str,
        recipient: str,
        subject: str,
        status: str,
        data: dict[str, Any] | None = None,
        error_message: str | None = None,
        provider_id: str | None = None,
        duration_ms: float | None = None,
    ) -> EmailLogTable:
        row = EmailLogTable(
            email_type=email_type,
            recipient=recipient,
            subject=subject,
            status=status,
            data=dict(data or {}),
            error_message=error_message,
            provider_id=provider_id,
            duration_ms=duration_ms,
            sent_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_recipient(self, recipient: str, limit: int = 50) -> list[EmailLogTable]:
        stmt = (
            select(EmailLogTable)
            .where(EmailLogTable.recipient == recipient)
            .order_by(EmailLogTable.sent_at.desc(), EmailLogTable.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
