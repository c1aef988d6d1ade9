"""Transactional email endpoint used by the web app."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from portlio_core.errors import ExternalServiceError
from pydantic import BaseModel, EmailStr, Field

from portlio_api.dependencies import SessionDep, SettingsDep, UserIdDep
from portlio_api.services.email_service import PUBLIC_EMAIL_TYPES, EmailService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emails", tags=["emails"])

_PUBLIC_TYPE_VALUES = frozenset(t.value for t in PUBLIC_EMAIL_TYPES)


class SendEmailRequest(BaseModel):
    type: str = Field(..., description="welcome, trial_ending, payment_success or portal_shared.")
    to: EmailStr
    data: dict[str, Any] = Field(default_factory=dict)


@router.post("/send", response_model=None)
async def send_email(
    body: SendEmailRequest,
    session: SessionDep,
    settings: SettingsDep,
    user_id: UserIdDep,
) -> Any:
    """Render and send one email.

    A provider failure is returned as a 500 body rather than raised, so
    the ``failed`` row in ``email_logs`` is still committed.
    """
    if body.type not in _PUBLIC_TYPE_VALUES:
        return JSONResponse(status_code=400, content={"error": "Invalid email type"})

    try:
        result = await EmailService(session, settings).send(body.type, body.to, body.data)
    except ExternalServiceError:
        logger.error("Email '%s' requested by user %s could not be sent", body.type, user_id)
        return JSONResponse(status_code=500, content={"error": "Failed to send email"})
    return {"success": True, "messageId": result.message_id}
