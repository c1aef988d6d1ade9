"""Tests for portal slug generation."""

from __future__ import annotations

import re

import pytest

from portlio_core.portals.slug import generate_slug, slugify


class TestSlugify:
    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("Hello, World!  Project", "hello-world-project"),
            ("  Leading and trailing  ", "leading-and-trailing"),
            ("Already-hyphenated--title", "already-hyphenated-title"),
            ("- dash - wrapped -", "dash-wrapped"),
            ("Q3 2026 Kickoff", "q3-2026-kickoff"),
            ("!!!", ""),
        ],
    )
    def test_normalisation(self, title: str, expected: str) -> None:
        assert slugify(title) == expected


class TestGenerateSlug:
    def test_pattern_with_timestamp_suffix(self) -> None:
        slug = generate_slug("Hello, World!  Project")
        assert re.fullmatch(r"hello-world-project-\d+", slug)

    def test_explicit_suffix(self) -> None:
        assert generate_slug("Brand Kit", now_ms=1700000000000) == "brand-kit-1700000000000"

    def test_empty_base_falls_back(self) -> None:
        assert generate_slug("???", now_ms=42) == "portal-42"

    def test_only_url_safe_characters(self) -> None:
        slug = generate_slug("Über Café & Co. / 100%")
        assert re.fullmatch(r"[a-z0-9-]+", slug)
        assert not slug.startswith("-")
