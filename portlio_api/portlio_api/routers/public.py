"""Visitor endpoints for published portals.

These routes bypass authentication.  Password-protected portals expect
the password in the ``X-Portal-Password`` header.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, File, Header, Request, UploadFile
from pydantic import BaseModel

from portlio_api.dependencies import BlobStoreDep, SessionDep, SettingsDep
from portlio_api.schemas import PortalResponse, UploadResponse
from portlio_api.services.public_service import PublicPortalService, VisitorInfo

router = APIRouter(prefix="/public/portals", tags=["public"])

PortalPasswordHeader = Annotated[str | None, Header(alias="X-Portal-Password")]


class ClickEventRequest(BaseModel):
    event_type: Literal["payment_click", "link_click"]
    block_id: int | None = None


def _get_client_ip(request: Request) -> str | None:
    """Extract the client IP, respecting X-Forwarded-For behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _visitor(request: Request) -> VisitorInfo:
    return VisitorInfo(
        ip=_get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )


@router.get("/{slug}", response_model=PortalResponse)
async def view_portal(
    slug: str,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    password: PortalPasswordHeader = None,
) -> dict[str, Any]:
    """Return a published portal with its blocks and record the view."""
    return await PublicPortalService(session, settings).view_portal(
        slug,
        password=password,
        visitor=_visitor(request),
    )


@router.post("/{slug}/events", status_code=202)
async def record_event(
    slug: str,
    body: ClickEventRequest,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    password: PortalPasswordHeader = None,
) -> dict[str, bool]:
    await PublicPortalService(session, settings).record_click(
        slug,
        event_type=body.event_type,
        block_id=body.block_id,
        password=password,
        visitor=_visitor(request),
    )
    return {"recorded": True}


@router.post("/{slug}/blocks/{block_id}/files", response_model=UploadResponse, status_code=201)
async def upload_file(
    slug: str,
    block_id: int,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    store: BlobStoreDep,
    file: UploadFile = File(...),
    password: PortalPasswordHeader = None,
) -> dict[str, Any]:
    """Upload one file to an upload block."""
    return await PublicPortalService(session, settings).upload_file(
        slug,
        block_id,
        filename=file.filename or "file",
        mime_type=file.content_type,
        read=file.read,
        password=password,
        store=store,
        size=file.size,
        visitor=_visitor(request),
    )
