"""Text normalization helpers for matching spreadsheet headers."""
from __future__ import annotations

import re
import unicodedata

_SEPARATOR_RE = re.compile(r"[\s_]+", flags=re.UNICODE)


def strip_accents(value: str) -> str:
    """Drop combining marks left behind by NFKD decomposition ("Ubicación" -> "Ubicacion")."""
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize_label(value: str) -> str:
    """Lowercase, accent-free, single-spaced form of a header label."""
    if not value:
        return ""
    cleaned = strip_accents(value).replace("\ufeff", "")
    return _SEPARATOR_RE.sub(" ", cleaned).strip().lower()
