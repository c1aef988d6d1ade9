"""Tests for content block settings."""

from __future__ import annotations

import pytest

from portlio_core.portals.blocks import (
    DEFAULT_BLOCK_TITLES,
    BlockType,
    LinkSettings,
    PaymentSettings,
    TextSettings,
    UploadSettings,
    default_settings,
    settings_to_json,
    validate_settings,
)


class TestDefaultSettings:
    def test_each_type_gets_its_own_model(self) -> None:
        assert isinstance(default_settings("text"), TextSettings)
        assert isinstance(default_settings("payment"), PaymentSettings)
        assert isinstance(default_settings("upload"), UploadSettings)
        assert isinstance(default_settings(BlockType.LINK), LinkSettings)

    def test_upload_defaults(self) -> None:
        settings = default_settings("upload")
        assert settings.max_files == 10
        assert settings.accepted_types == ["*"]

    def test_payment_defaults(self) -> None:
        settings = default_settings("payment")
        assert settings.currency == "USD"
        assert settings.amount == 0

    def test_every_type_has_a_default_title(self) -> None:
        assert DEFAULT_BLOCK_TITLES[BlockType.PAYMENT] == "New Payment Block"
        assert set(DEFAULT_BLOCK_TITLES) == set(BlockType)

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValueError):
            default_settings("video")


class TestValidateSettings:
    def test_partial_settings_filled_with_defaults(self) -> None:
        settings = validate_settings("payment", {"amount": 250})
        assert settings.amount == 250
        assert settings.currency == "USD"

    def test_fields_of_other_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid settings"):
            validate_settings("text", {"amount": 10})

    def test_mismatched_discriminator_rejected(self) -> None:
        with pytest.raises(ValueError, match="cannot be stored"):
            validate_settings("upload", {"type": "link", "url": "https://x"})

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValueError):
            validate_settings("payment", {"amount": -1})

    def test_none_means_defaults(self) -> None:
        assert validate_settings("link", None).button_text == "Open link"

    def test_json_form_has_no_discriminator(self) -> None:
        data = settings_to_json(validate_settings("upload", {"max_files": 3}))
        assert data == {"max_files": 3, "accepted_types": ["*"]}
