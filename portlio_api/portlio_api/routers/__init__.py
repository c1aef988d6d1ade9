"""API router modules for the Portlio HTTP API."""

from __future__ import annotations

from portlio_api.routers import (
    auth,
    billing,
    emails,
    health,
    portals,
    profile,
    public,
)

__all__ = [
    "auth",
    "billing",
    "emails",
    "health",
    "portals",
    "profile",
    "public",
]
