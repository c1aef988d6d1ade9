"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment label."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``PORTLIO_`` (e.g. ``PORTLIO_PORT=9000``) or through a ``.env`` file in
    the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Async SQLAlchemy URL; SQLite tables are created on startup.
    database_url: str = "sqlite+aiosqlite:///./portlio.db"

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present, so fail at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    # Structured JSON logging.
    structured_logging: bool = False

    # Access tokens.
    jwt_secret: SecretStr = SecretStr("portlio-dev-secret-change-in-production")
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 3600

    # Stripe billing integration.
    billing_enabled: bool = False
    stripe_secret_key: SecretStr = SecretStr("")
    stripe_webhook_secret: SecretStr = SecretStr("")
    stripe_price_professional: str = ""
    stripe_price_agency: str = ""

    # Public base URL of the web app (checkout return URLs, portal links).
    app_url: str = "http://localhost:3000"

    # Transactional email via Resend.
    resend_api_key: SecretStr = SecretStr("")
    email_from: str = "noreply@portlio.com"
    support_email: str = "support@portlio.com"
    email_timeout: float = 10.0

    # Blob storage for portal uploads.
    blob_storage_path: str = "./var/blobs"
    blob_public_base_url: str = "http://localhost:8000/files"
    upload_bucket: str = "portal-uploads"

    # Plan and usage windows, in days.
    trial_days: int = 14
    billing_cycle_days: int = 30
    usage_window_days: int = 30

    def price_id_for(self, plan_id: str) -> str:
        """Return the configured Stripe price for a purchasable plan, or ``""``."""
        return {
            "professional": self.stripe_price_professional,
            "agency": self.stripe_price_agency,
        }.get(plan_id, "")


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
