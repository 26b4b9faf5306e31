"""
Storage module for the drawing extraction engine.

Provides the file-based result cache.
"""

from drawing_extraction.storage.result_cache import (
    CacheEntry,
    ResultCache,
    method_identifier,
)


__all__ = [
    "CacheEntry",
    "ResultCache",
    "method_identifier",
]
