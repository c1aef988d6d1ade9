"""Fixed starter content for portals created from a template."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from portlio_core.portals.blocks import BlockType


class TemplateId(str, Enum):
    FREELANCER = "freelancer"
    AGENCY = "agency"
    MINIMAL = "minimal"


@dataclass(frozen=True)
class BlockSeed:
    """A content block to create, in template order."""

    block_type: BlockType
    title: str
    content: str
    settings: dict[str, Any] = field(default_factory=dict)


TEMPLATES: dict[TemplateId, tuple[BlockSeed, ...]] = {
    TemplateId.FREELANCER: (
        BlockSeed(
            BlockType.TEXT,
            "Welcome Message",
            "Welcome to your project! Here's what we need to get started.",
        ),
        BlockSeed(
            BlockType.PAYMENT,
            "Project Payment",
            "Complete your project payment to move forward",
            {"amount": 500, "currency": "USD", "payment_link": ""},
        ),
        BlockSeed(
            BlockType.UPLOAD,
            "Upload Your Files",
            "Please upload your brand assets, logos, and any materials.",
            {"max_files": 10, "accepted_types": ["*"]},
        ),
    ),
    TemplateId.AGENCY: (
        BlockSeed(
            BlockType.TEXT,
            "Welcome to Our Agency",
            "Thanks for choosing us. This portal has everything we need to kick off your project.",
        ),
        BlockSeed(
            BlockType.TEXT,
            "Project Brief",
            "Review the scope, timeline and deliverables we agreed on.",
        ),
        BlockSeed(
            BlockType.PAYMENT,
            "Project Deposit",
            "Pay the project deposit to reserve your slot.",
            {"amount": 2500, "currency": "USD", "payment_link": ""},
        ),
        BlockSeed(
            BlockType.UPLOAD,
            "Brand Assets",
            "Upload logos, brand guidelines, copy and any reference material.",
            {"max_files": 20, "accepted_types": ["image/*", ".pdf", ".zip"]},
        ),
    ),
    TemplateId.MINIMAL: (
        BlockSeed(
            BlockType.TEXT,
            "Welcome",
            "Welcome! More details coming soon.",
        ),
    ),
}


def template_blocks(template_id: TemplateId | str) -> tuple[BlockSeed, ...]:
    """Return the block seeds for *template_id*.

    Raises
    ------
    ValueError
        If the template is unknown.
    """
    try:
        key = TemplateId(template_id)
    except ValueError:
        raise ValueError(f"Unknown template '{template_id}'") from None
    return TEMPLATES[key]
