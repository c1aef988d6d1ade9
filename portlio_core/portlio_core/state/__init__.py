"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from portlio_core.state.database import create_session_factory, get_engine
from portlio_core.state.repository import (
    AnalyticsRepository,
    ContentBlockRepository,
    EmailLogRepository,
    PortalRepository,
    SubscriptionRepository,
    TokenRevocationRepository,
    UploadedFileRepository,
    UserEventRepository,
    UserProfileRepository,
    UserRepository,
)

__all__ = [
    "AnalyticsRepository",
    "ContentBlockRepository",
    "EmailLogRepository",
    "PortalRepository",
    "SubscriptionRepository",
    "TokenRevocationRepository",
    "UploadedFileRepository",
    "UserEventRepository",
    "UserProfileRepository",
    "UserRepository",
    "create_session_factory",
    "get_engine",
]
