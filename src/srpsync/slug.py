"""URL-safe slug normalization.

Produces the same form as a lowercase + ASCII-folding + hyphen search-index
normalizer, so path values line up with indexed make/model/body values:

    >>> normalize_for_url("Ford F-150")
    'ford-f-150'
    >>> normalize_for_url("Citroën")
    'citroen'
    >>> normalize_for_url("Range Rover (Sport)")
    'range-rover-sport'
"""

import re
import unicodedata

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")
_REPEATED_HYPHENS = re.compile(r"-+")


def normalize_for_url(text: str | None) -> str:
    """Lowercase, strip diacritics and hyphenate ``text`` for use in a path."""
    if not text:
        return ""

    normalized = unicodedata.normalize("NFD", str(text).lower())
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = _INVALID_CHARS.sub("-", normalized)
    normalized = _REPEATED_HYPHENS.sub("-", normalized)
    return normalized.strip("-")

