"""Text helpers for prompt and payload construction."""

from __future__ import annotations

import re
from typing import Iterable

_WORD_RE = re.compile(r"[A-Za-z0-9_]+")


def truncate(text: str, max_chars: int, *, suffix: str = "") -> str:
    """Cut *text* to at most ``max_chars`` characters, suffix included."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if not suffix:
        return text[:max_chars]
    keep = max(max_chars - len(suffix), 0)
    return text[:keep] + suffix


def join_values(values: Iterable[str], *, separator: str = ", ") -> str:
    """Join non-empty values in order, keeping duplicates as found."""
    return separator.join(value.strip() for value in values if value and value.strip())


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens (identifiers split on punctuation)."""
    return [token.lower() for token in _WORD_RE.findall(text)]

