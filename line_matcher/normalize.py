"""Text Normalization Utilities.

This module provides the single normalization used for alias keys and for
search text, so that lookups and writes always agree. The process:
1. Blank every character outside ASCII letters, digits and whitespace
2. Lowercase
3. Collapse whitespace runs to one space and trim

Normalization is idempotent and locale-independent: non-ASCII characters
are noise and become spaces.

Examples:
    "5523795 TERRA DATES $9.49" → "5523795 terra dates 9 49"
    "Café  Crème"               → "caf cr me"
    "  AB1234   Sponges 2pk "   → "ab1234 sponges 2pk"
"""

import re
from typing import List, Optional


_NOISE = re.compile(r"[^A-Za-z0-9\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_CODE_CHARS = re.compile(r"[a-z0-9]+", re.ASCII)
_DIGIT = re.compile(r"\d", re.ASCII)
_LETTER = re.compile(r"[a-z]")

# Store line codes are SKU-like tokens: long enough to be distinctive,
# short enough not to be a whole product description.
LINE_CODE_MIN_LENGTH = 4
LINE_CODE_MAX_LENGTH = 16


def normalize_text(text: Optional[str]) -> str:
    """Normalize free text for alias keys and search.

    Args:
        text: Raw line text (None is treated as empty)

    Returns:
        Normalized text, possibly empty

    Examples:
        >>> normalize_text("TERRA Dates, 12oz!")
        'terra dates 12oz'
        >>> normalize_text(normalize_text("TERRA Dates, 12oz!"))
        'terra dates 12oz'
    """
    if not text:
        return ""
    text = _NOISE.sub(" ", text).lower()
    return _WHITESPACE.sub(" ", text).strip()


def normalize_alias_text(text: Optional[str]) -> str:
    """Normalize text destined for an alias key (same as normalize_text)."""
    return normalize_text(text)


def tokenize(text: Optional[str]) -> List[str]:
    """Split normalized text into tokens."""
    normalized = normalize_text(text)
    return normalized.split(" ") if normalized else []


def extract_store_line_code(raw_text: Optional[str]) -> Optional[str]:
    """Extract a likely store-internal line code from the start of a line.

    Many retail receipts prefix each line with a store SKU, which is a
    stronger match key than the printed product description.

    The first token qualifies when:
    - the line has at least two tokens
    - its length is within [4, 16]
    - it is purely [a-z0-9] and contains at least one digit
    - the remaining tokens contain at least one letter (rejects quantity
      and price fragments such as "2 x 3 99")

    Args:
        raw_text: Raw receipt line

    Returns:
        The normalized code, or None

    Examples:
        >>> extract_store_line_code("5523795 TERRA DATES $9.49")
        '5523795'
        >>> extract_store_line_code("AB1234 SPONGES 2PK 4.99")
        'ab1234'
        >>> extract_store_line_code("1234 5678") is None
        True
    """
    parts = tokenize(raw_text)
    if len(parts) < 2:
        return None

    first = parts[0]
    if not (LINE_CODE_MIN_LENGTH <= len(first) <= LINE_CODE_MAX_LENGTH):
        return None
    if not _CODE_CHARS.fullmatch(first):
        return None
    if not _DIGIT.search(first):
        return None

    remainder = " ".join(parts[1:])
    if not _LETTER.search(remainder):
        return None

    return first
