"""Filesystem-friendly identifiers for unit ids and phase names."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_UNSAFE_PATTERN: Pattern[str] = re.compile(r"[^A-Za-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "unit", max_length: int = 80) -> str:
    """Normalise ``value`` into a lowercase slug of at most ``max_length`` chars."""
    source = (value or "").strip().lower()
    slug = _HYPHEN_COLLAPSE.sub("-", _UNSAFE_PATTERN.sub("-", source)).strip("-.")
    if not slug:
        slug = (fallback or "unit").strip().lower() or "unit"
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix}-{digest}"


__all__ = ["slugify"]
