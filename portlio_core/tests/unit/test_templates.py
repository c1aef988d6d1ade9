"""Tests for portal templates."""

from __future__ import annotations

import pytest

from portlio_core.portals.blocks import BlockType, validate_settings
from portlio_core.portals.templates import TEMPLATES, TemplateId, template_blocks


class TestTemplates:
    def test_agency_template_has_four_blocks_in_order(self) -> None:
        blocks = template_blocks("agency")
        assert [b.block_type for b in blocks] == [
            BlockType.TEXT,
            BlockType.TEXT,
            BlockType.PAYMENT,
            BlockType.UPLOAD,
        ]
        assert blocks[1].title == "Project Brief"

    def test_agency_payment_defaults(self) -> None:
        payment = template_blocks(TemplateId.AGENCY)[2]
        assert payment.settings["amount"] == 2500
        assert payment.settings["currency"] == "USD"

    def test_minimal_template_single_block(self) -> None:
        assert len(template_blocks("minimal")) == 1

    def test_freelancer_template(self) -> None:
        titles = [b.title for b in template_blocks("freelancer")]
        assert titles == ["Welcome Message", "Project Payment", "Upload Your Files"]

    def test_unknown_template(self) -> None:
        with pytest.raises(ValueError, match="Unknown template"):
            template_blocks("enterprise")

    def test_all_seed_settings_are_valid(self) -> None:
        for seeds in TEMPLATES.values():
            for seed in seeds:
                validate_settings(seed.block_type, seed.settings)
