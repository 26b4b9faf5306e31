"""
Corrections for common OCR misreads in structural callouts.

Vision models confuse ``l``/``I`` with ``1`` and ``O`` with ``0`` inside
member sizes, and return dimension strings with stray spacing or curly
quotes. The substitutions below run in order; later rules rely on the
earlier ones having normalised W-shape prefixes.
"""

import re
from typing import Any


_OCR_SUBSTITUTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    # Wl8x106 -> W18x106
    (re.compile(r"W[lI](\d)"), r"W1\1"),
    # W1Ox100 -> W10x100
    (re.compile(r"W(\d+)O(?=\s*[xX\d])"), r"W\g<1>0"),
    # W18xl06 -> W18x106
    (re.compile(r"W(\d+)[xX]?[lI](\d)"), r"W\1x1\2"),
    # W18 X 106 -> W18x106
    (re.compile(r"W(\d+)\s*[xX]\s*(\d+)"), r"W\1x\2"),
    # HSS 6 x 6 x 1/4 -> HSS6x6x1/4
    (re.compile(r"HSS\s*(\d+)\s*[xX]\s*(\d+)\s*[xX]\s*(\d+/?\d*)"), r"HSS\1x\2x\3"),
    # l2'-6" -> 12'-6"
    (re.compile(r"(^|[^a-zA-Z])l(\d)"), r"\g<1>1\g<2>"),
    (re.compile(r"(\d)O(\d)"), r"\g<1>0\g<2>"),
    (re.compile(r"O(\d)"), r"0\1"),
    # 24 ' - 6 " and curly quotes -> 24'-6"
    (
        re.compile(r"(\d+)\s*['‘’′]\s*[-–]?\s*(\d+)\s*[\"“”″]"),
        "\\1'-\\2\"",
    ),
)


def fix_ocr_errors(text: str) -> str:
    """
    Apply OCR corrections to a single string.

    Args:
        text: Raw string from the model.

    Returns:
        Corrected string; unchanged when no rule matches.
    """
    for pattern, replacement in _OCR_SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text


def fix_ocr_nested(value: Any) -> Any:
    """Apply ``fix_ocr_errors`` to every string inside lists and dicts."""
    if isinstance(value, str):
        return fix_ocr_errors(value)
    if isinstance(value, list):
        return [fix_ocr_nested(item) for item in value]
    if isinstance(value, dict):
        return {key: fix_ocr_nested(item) for key, item in value.items()}
    return value
