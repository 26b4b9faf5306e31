"""
String utility functions for drawing extraction.

Provides normalization helpers shared by consensus voting and
quantity cross-checking.
"""

import re
from typing import Any


_WHITESPACE_PATTERN = re.compile(r"\s+")
_NON_WORD_PATTERN = re.compile(r"[^\w]")
_LEADING_INT_PATTERN = re.compile(r"^\s*[+-]?\d+")


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace in text.

    Collapses multiple spaces, tabs, newlines into single spaces.

    Example:
        normalize_whitespace("W18x106   @ \\n 16 OC") -> "W18x106 @ 16 OC"
    """
    if not text:
        return ""

    return " ".join(text.split())


def normalize_item_key(value: Any) -> str:
    """
    Normalize an engineering mark or item label into a join key.

    Upper-cases the value and strips whitespace and punctuation, so
    ``"w18 x 106"``, ``"W18X106"`` and ``"W18-X106"`` all share a key.

    Args:
        value: Mark, size or item label. Non-strings are stringified.

    Returns:
        Normalized key; empty string when nothing identifying remains.
    """
    if value is None:
        return ""
    text = str(value).upper()
    text = _WHITESPACE_PATTERN.sub("", text)
    text = _NON_WORD_PATTERN.sub("", text)
    return text.replace("_", "")


def parse_positive_int(value: Any) -> int | None:
    """
    Best-effort positive integer from a schedule cell.

    Accepts ints, integral floats and strings with a leading integer
    (``"12"``, ``"4 EA"``). Returns None for anything else or for values
    that are not strictly positive.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        if value != value or value <= 0:  # NaN check
            return None
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT_PATTERN.match(value)
        if match:
            number = int(match.group(0))
            return number if number > 0 else None
    return None
