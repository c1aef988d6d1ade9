"""Domain exceptions shared by the core and API layers.

The API maps each class to an HTTP status in its exception handlers, so
services raise these instead of building responses themselves.
"""

from __future__ import annotations

from typing import Any


class PortlioError(Exception):
    """Base class for all Portlio domain errors."""


class NotFoundError(PortlioError):
    """The entity does not exist or is not owned by the caller.

    Ownership failures deliberately use this class as well so that the
    existence of another user's portal is never revealed.
    """

    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(f"{entity} '{identifier}' not found")
        self.entity = entity
        self.identifier = identifier


class QuotaExceededError(PortlioError):
    """A plan limit blocks the requested action."""

    def __init__(self, metric: str, used: int, limit: int, upgrade: str) -> None:
        super().__init__(f"{metric} limit reached ({used}/{limit})")
        self.metric = metric
        self.used = used
        self.limit = limit
        self.upgrade = upgrade


class ExternalServiceError(PortlioError):
    """A call to Stripe, the email provider or the blob store failed."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ReorderConflictError(PortlioError):
    """A block reorder could not be applied.

    Carries the authoritative order reloaded from storage so the caller
    can discard its optimistic ordering.
    """

    def __init__(self, portal_id: int, blocks: list[dict[str, Any]]) -> None:
        super().__init__(f"Reorder of portal {portal_id} failed; order reloaded from storage")
        self.portal_id = portal_id
        self.blocks = blocks


class PortalPasswordError(PortlioError):
    """A password-protected portal was requested without the right password."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Portal '{slug}' requires a password")
        self.slug = slug
