"""
Utility modules for the drawing extraction engine.

Provides hashing and string normalization helpers.
"""

from drawing_extraction.utils.hash_utils import DIGEST_LENGTH, file_sha256, image_digest
from drawing_extraction.utils.string_utils import (
    normalize_item_key,
    normalize_whitespace,
    parse_positive_int,
)


__all__ = [
    "DIGEST_LENGTH",
    "file_sha256",
    "image_digest",
    "normalize_item_key",
    "normalize_whitespace",
    "parse_positive_int",
]
