"""URL slug generation for portals."""

from __future__ import annotations

import re
import time

_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SPACE_RE = re.compile(r"\s+")
_HYPHEN_RE = re.compile(r"-+")

_FALLBACK_BASE = "portal"


def slugify(title: str) -> str:
    """Reduce *title* to lowercase alphanumerics separated by single hyphens."""
    text = _STRIP_RE.sub("", title.lower())
    text = _SPACE_RE.sub("-", text)
    text = _HYPHEN_RE.sub("-", text)
    return text.strip("-")


def generate_slug(title: str, now_ms: int | None = None) -> str:
    """Build a globally unique slug from *title*.

    The creation time in milliseconds is appended as a uniqueness suffix
    so no pre-check query is needed.  Titles that reduce to nothing (all
    punctuation, non-Latin scripts) use ``portal`` as the base.

    Parameters
    ----------
    title:
        The portal title.
    now_ms:
        Override for the suffix; defaults to the current epoch millis.
    """
    base = slugify(title) or _FALLBACK_BASE
    suffix = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{base}-{suffix}"
