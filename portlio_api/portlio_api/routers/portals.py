"""Owner endpoints for portals and their content blocks."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from portlio_core.billing.features import Feature
from pydantic import BaseModel, Field

from portlio_api.dependencies import BlobStoreDep, SessionDep, SettingsDep, UserIdDep, require_feature
from portlio_api.schemas import BlockResponse, FileEntryResponse, PortalResponse, PortalStatsResponse
from portlio_api.services.portal_service import PortalService

router = APIRouter(prefix="/portals", tags=["portals"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PortalCreateRequest(BaseModel):
    title: str = Field(..., max_length=256)
    description: str = ""
    template_id: str | None = Field(default=None, description="freelancer, agency or minimal.")
    primary_color: str | None = Field(default=None, max_length=16)
    password: str | None = None


class PortalUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    description: str | None = None
    primary_color: str | None = Field(default=None, max_length=16)
    password: str | None = Field(default=None, description="Empty string removes protection.")


class BlockCreateRequest(BaseModel):
    type: str = Field(..., description="text, payment, upload or link.")
    title: str | None = Field(default=None, max_length=256)
    content: str = ""
    settings: dict[str, Any] | None = None


class BlockUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    content: str | None = None
    settings: dict[str, Any] | None = None


class ReorderRequest(BaseModel):
    from_position: int = Field(..., ge=1)
    to_position: int = Field(..., ge=1)


def _service(session: SessionDep, settings: SettingsDep, user_id: UserIdDep) -> PortalService:
    return PortalService(session, settings, user_id)


# ---------------------------------------------------------------------------
# Portals
# ---------------------------------------------------------------------------


@router.get("", response_model=list[PortalResponse], response_model_exclude_none=True)
async def list_portals(service: PortalService = Depends(_service)) -> list[dict[str, Any]]:
    return await service.list_portals()


@router.post("", response_model=PortalResponse, status_code=201)
async def create_portal(body: PortalCreateRequest, service: PortalService = Depends(_service)) -> dict[str, Any]:
    """Create a draft portal, optionally seeded from a template."""
    return await service.create_portal(
        title=body.title,
        description=body.description,
        template_id=body.template_id,
        primary_color=body.primary_color,
        password=body.password,
    )


@router.get("/{portal_id}", response_model=PortalResponse)
async def get_portal(portal_id: int, service: PortalService = Depends(_service)) -> dict[str, Any]:
    return await service.get_portal(portal_id)


@router.patch("/{portal_id}", response_model=PortalResponse, response_model_exclude_none=True)
async def update_portal(
    portal_id: int,
    body: PortalUpdateRequest,
    service: PortalService = Depends(_service),
) -> dict[str, Any]:
    return await service.update_portal(portal_id, body.model_dump(exclude_unset=True))


@router.post("/{portal_id}/publish", response_model=PortalResponse, response_model_exclude_none=True)
async def toggle_publish(portal_id: int, service: PortalService = Depends(_service)) -> dict[str, Any]:
    """Flip the portal between draft and published."""
    return await service.toggle_publish(portal_id)


@router.delete("/{portal_id}", status_code=204)
async def delete_portal(portal_id: int, service: PortalService = Depends(_service)) -> Response:
    await service.delete_portal(portal_id)
    return Response(status_code=204)


@router.get(
    "/{portal_id}/stats",
    response_model=PortalStatsResponse,
    dependencies=[Depends(require_feature(Feature.ANALYTICS))],
)
async def portal_stats(portal_id: int, service: PortalService = Depends(_service)) -> dict[str, Any]:
    return await service.portal_stats(portal_id)


@router.get("/{portal_id}/files", response_model=list[FileEntryResponse])
async def list_files(
    portal_id: int,
    store: BlobStoreDep,
    service: PortalService = Depends(_service),
) -> list[dict[str, Any]]:
    return await service.list_files(portal_id, store)


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@router.get("/{portal_id}/blocks", response_model=list[BlockResponse])
async def list_blocks(portal_id: int, service: PortalService = Depends(_service)) -> list[dict[str, Any]]:
    return await service.list_blocks(portal_id)


@router.post("/{portal_id}/blocks", response_model=BlockResponse, status_code=201)
async def add_block(
    portal_id: int,
    body: BlockCreateRequest,
    service: PortalService = Depends(_service),
) -> dict[str, Any]:
    return await service.add_block(
        portal_id,
        block_type=body.type,
        title=body.title,
        content=body.content,
        settings=body.settings,
    )


@router.post("/{portal_id}/blocks/reorder", response_model=list[BlockResponse])
async def reorder_blocks(
    portal_id: int,
    body: ReorderRequest,
    service: PortalService = Depends(_service),
) -> list[dict[str, Any]]:
    """Move one block; returns the portal's blocks in their new order."""
    return await service.reorder_blocks(portal_id, body.from_position, body.to_position)


@router.patch("/{portal_id}/blocks/{block_id}", response_model=BlockResponse)
async def update_block(
    portal_id: int,
    block_id: int,
    body: BlockUpdateRequest,
    service: PortalService = Depends(_service),
) -> dict[str, Any]:
    return await service.update_block(portal_id, block_id, body.model_dump(exclude_unset=True))


@router.delete("/{portal_id}/blocks/{block_id}", response_model=list[BlockResponse])
async def delete_block(
    portal_id: int,
    block_id: int,
    service: PortalService = Depends(_service),
) -> list[dict[str, Any]]:
    """Delete a block; returns the remaining blocks, resequenced."""
    return await service.delete_block(portal_id, block_id)
