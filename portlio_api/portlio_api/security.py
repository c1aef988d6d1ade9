"""Access-token issuing and validation.

Tokens are HS256 JWTs signed with ``APISettings.jwt_secret``.  Each token
carries a unique ``jti`` so sign-out can revoke it individually.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from portlio_api.config import APISettings

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    """Validated claims of an access token."""

    sub: str
    email: str
    jti: str
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=UTC)


class TokenManager:
    """Issue and validate access tokens.

    Parameters
    ----------
    secret:
        HMAC signing secret.
    algorithm:
        JWS algorithm, ``HS256`` by default.
    ttl_seconds:
        Lifetime of newly issued tokens.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 3600) -> None:
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = ttl_seconds

    @classmethod
    def from_settings(cls, settings: APISettings) -> TokenManager:
        return cls(
            secret=settings.jwt_secret.get_secret_value(),
            algorithm=settings.jwt_algorithm,
            ttl_seconds=settings.access_token_ttl_seconds,
        )

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def generate_token(self, sub: str, email: str) -> str:
        """Create a signed access token for *sub*."""
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            "sub": sub,
            "email": email,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self._ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def validate_token(self, token: str) -> TokenClaims:
        """Decode and verify *token*.

        Raises
        ------
        PermissionError
            If the token is expired, malformed, or fails signature
            verification.  The message contains ``expired`` for expired
            tokens.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise PermissionError("Token has expired") from exc
        except JWTError as exc:
            raise PermissionError(str(exc) or "Token could not be decoded") from exc

        try:
            return TokenClaims.model_validate(payload)
        except ValueError as exc:
            raise PermissionError("Token is missing required claims") from exc
