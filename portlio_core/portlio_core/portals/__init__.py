"""Portal content model: slugs, block settings, templates and ordering."""

from portlio_core.portals.blocks import BlockType, default_settings, validate_settings
from portlio_core.portals.reorder import move, plan_move
from portlio_core.portals.slug import generate_slug, slugify
from portlio_core.portals.templates import TemplateId, template_blocks

__all__ = [
    "BlockType",
    "TemplateId",
    "default_settings",
    "generate_slug",
    "move",
    "plan_move",
    "slugify",
    "template_blocks",
    "validate_settings",
]
