"""Shared fixtures for Portlio API tests.

Provides an in-memory SQLite database shared by every session of a test,
test settings, a seeded owner account, bearer tokens and an async httpx
client bound to the app.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set the signing secret BEFORE importing application modules so the
# AuthenticationMiddleware built by create_app() uses it.
_TEST_JWT_SECRET = "test-secret-key-for-portlio-tests"
os.environ.setdefault("PORTLIO_JWT_SECRET", _TEST_JWT_SECRET)

import portlio_api.middleware.auth as auth_middleware  # noqa: E402
from portlio_api.config import APISettings  # noqa: E402
from portlio_api.dependencies import get_blob_store, get_db_session, get_settings  # noqa: E402
from portlio_api.main import create_app  # noqa: E402
from portlio_api.security import TokenManager  # noqa: E402
from portlio_api.services.email_service import EmailService  # noqa: E402
from portlio_api.services.storage import LocalBlobStore  # noqa: E402
from portlio_core.state.tables import Base, UserTable  # noqa: E402

OWNER_ID = "user-1"
OWNER_EMAIL = "owner@example.com"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path) -> APISettings:
    """Return settings suitable for testing, with billing enabled."""
    return APISettings(
        database_url="sqlite+aiosqlite://",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        jwt_secret=os.environ["PORTLIO_JWT_SECRET"],
        billing_enabled=True,
        stripe_secret_key="sk_test_xxx",
        stripe_webhook_secret="whsec_test_xxx",
        stripe_price_professional="price_professional",
        stripe_price_agency="price_agency",
        app_url="https://app.portlio.test",
        resend_api_key="re_test_xxx",
        blob_storage_path=str(tmp_path / "blobs"),
        blob_public_base_url="https://files.portlio.test",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over one in-memory database shared by all sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def owner_id(session_factory) -> str:
    """Insert the portal owner and return their id."""
    async with session_factory() as session:
        session.add(UserTable(id=OWNER_ID, email=OWNER_EMAIL, password_hash="x", user_metadata={}))
        await session.commit()
    return OWNER_ID


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.fixture()
def token_manager(test_settings: APISettings) -> TokenManager:
    return TokenManager.from_settings(test_settings)


@pytest.fixture()
def auth_headers(token_manager: TokenManager) -> dict[str, str]:
    token = token_manager.generate_token(OWNER_ID, OWNER_EMAIL)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# App and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def blob_store(test_settings: APISettings) -> LocalBlobStore:
    return LocalBlobStore(
        base_path=test_settings.blob_storage_path,
        public_base_url=test_settings.blob_public_base_url,
        bucket=test_settings.upload_bucket,
    )


@pytest.fixture()
def app(test_settings, session_factory, blob_store, monkeypatch):
    """Create the app with the test database, settings and blob store injected."""
    monkeypatch.setattr(auth_middleware, "_check_revocation", None)
    application = create_app()

    async def _override_session():
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_blob_store] = lambda: blob_store
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client; pass ``headers=auth_headers`` per request."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Email provider
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def resend_client() -> Iterator[MagicMock]:
    """Replace the Resend module so no test reaches the provider."""
    fake = MagicMock()
    fake.Emails.send.return_value = {"id": "msg_test"}
    with patch.object(EmailService, "_get_resend", return_value=fake):
        yield fake
