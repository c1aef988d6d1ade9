"""Content block types and their type-specific settings.

Each block type carries its own settings model.  The models form a
tagged union discriminated by ``type`` so that a payment block can never
be persisted with upload settings and vice versa.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class BlockType(str, Enum):
    """Kinds of content a portal can hold."""

    TEXT = "text"
    PAYMENT = "payment"
    UPLOAD = "upload"
    LINK = "link"


class _SettingsBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TextSettings(_SettingsBase):
    type: Literal["text"] = "text"


class PaymentSettings(_SettingsBase):
    type: Literal["payment"] = "payment"
    amount: float = Field(default=0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    payment_link: str = ""


class UploadSettings(_SettingsBase):
    type: Literal["upload"] = "upload"
    max_files: int = Field(default=10, ge=1, le=100)
    accepted_types: list[str] = Field(default_factory=lambda: ["*"])


class LinkSettings(_SettingsBase):
    type: Literal["link"] = "link"
    url: str = ""
    button_text: str = "Open link"


BlockSettings = Annotated[
    Union[TextSettings, PaymentSettings, UploadSettings, LinkSettings],
    Field(discriminator="type"),
]

_SETTINGS_ADAPTER: TypeAdapter[BlockSettings] = TypeAdapter(BlockSettings)

DEFAULT_BLOCK_TITLES: dict[BlockType, str] = {
    BlockType.TEXT: "New Text Block",
    BlockType.PAYMENT: "New Payment Block",
    BlockType.UPLOAD: "New Upload Block",
    BlockType.LINK: "New Link Block",
}


def default_settings(block_type: BlockType | str) -> BlockSettings:
    """Return the fixed default settings for a new block of *block_type*."""
    return _SETTINGS_ADAPTER.validate_python({"type": BlockType(block_type).value})


def validate_settings(block_type: BlockType | str, raw: dict[str, Any] | None) -> BlockSettings:
    """Validate *raw* against the settings model of *block_type*.

    Missing fields take their defaults.  A ``type`` key inside *raw*
    that disagrees with *block_type* is rejected.

    Raises
    ------
    ValueError
        If the settings do not match the block type.
    """
    kind = BlockType(block_type).value
    payload = dict(raw or {})
    declared = payload.pop("type", kind)
    if declared != kind:
        raise ValueError(f"Settings of type '{declared}' cannot be stored on a '{kind}' block")
    try:
        return _SETTINGS_ADAPTER.validate_python({"type": kind, **payload})
    except ValidationError as exc:
        raise ValueError(f"Invalid settings for '{kind}' block: {exc.errors()[0]['msg']}") from exc


def settings_to_json(settings: BlockSettings) -> dict[str, Any]:
    """Serialise settings for the JSON column, without the discriminator."""
    return settings.model_dump(exclude={"type"})
