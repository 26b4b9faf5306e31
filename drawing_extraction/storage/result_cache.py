"""
File-based cache of extraction results.

One JSON file per (image digest, method identifier). Entries stay valid for
a configurable window (24 hours by default); expired entries read as misses
but are only removed by ``purge_expired``.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from drawing_extraction.config import get_logger, get_settings


logger = get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def method_identifier(
    tier: str,
    discipline: str | None,
    prompt_version: int,
    configuration: Mapping[str, Any] | None = None,
) -> str:
    """
    Versioned cache method identifier, e.g. ``multi-pass:structural:v3``.

    Bumping the prompt version invalidates every earlier entry. When the
    tier's model configuration is given, a short fingerprint of it is
    appended (``single:structural:v3:1a2b3c4d``); entries written under a
    different model setup never match.
    """
    identifier = f"{tier}:{(discipline or 'general').strip().lower()}:v{prompt_version}"
    if not configuration:
        return identifier
    encoded = json.dumps(configuration, sort_keys=True, default=str).encode("utf-8")
    return f"{identifier}:{hashlib.sha256(encoded).hexdigest()[:8]}"


def _slug(value: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", value).strip("_") or "default"


@dataclass(slots=True)
class CacheEntry:
    """
    One cached extraction.

    Attributes:
        image_digest: Content digest of the page image.
        method: Method identifier the result was produced with.
        record: Serialised extraction record.
        confidence: Confidence of the cached result.
        created_at: Unix timestamp of the write.
        processing_time_ms: Time the original extraction took.
        metrics: Performance breakdown of the original extraction.
    """

    image_digest: str
    method: str
    record: dict[str, Any]
    confidence: float
    created_at: float
    processing_time_ms: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)

    def age_hours(self, now: float) -> float:
        return (now - self.created_at) / 3600

    def is_expired(self, now: float, ttl_hours: float) -> bool:
        """True once the entry is at least ``ttl_hours`` old."""
        return self.age_hours(now) >= ttl_hours

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "image_digest": self.image_digest,
            "method": self.method,
            "record": self.record,
            "confidence": self.confidence,
            "created_at": self.created_at,
            "processing_time_ms": self.processing_time_ms,
            "metrics": self.metrics,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        """
        Rebuild an entry from its stored form.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a field has the wrong shape.
            ValueError: If a numeric field cannot be converted.
        """
        record = data["record"]
        if not isinstance(record, dict):
            raise TypeError("cached record must be an object")
        metrics = data.get("metrics") or {}
        if not isinstance(metrics, dict):
            raise TypeError("cached metrics must be an object")
        return cls(
            image_digest=str(data["image_digest"]),
            method=str(data["method"]),
            record=record,
            confidence=float(data["confidence"]),
            created_at=float(data["created_at"]),
            processing_time_ms=int(data.get("processing_time_ms", 0)),
            metrics=metrics,
        )


class ResultCache:
    """
    JSON-file store of extraction results keyed by image digest and method.

    Writes go to a temporary file that is renamed into place under a lock,
    so readers never see a half-written entry. The last writer wins.

    Example:
        cache = ResultCache("./data/vision-cache")
        entry = cache.lookup(digest, "single:structural:v3")
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        ttl_hours: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the cache.

        Args:
            directory: Directory holding cache files.
            ttl_hours: Validity window of an entry.
            clock: Source of the current Unix time.
        """
        settings = get_settings().cache

        self._directory = Path(directory) if directory is not None else settings.directory
        self._ttl_hours = ttl_hours if ttl_hours is not None else settings.ttl_hours
        self._clock = clock
        self._lock = threading.Lock()

        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def ttl_hours(self) -> float:
        return self._ttl_hours

    def _entry_path(self, image_digest: str, method: str) -> Path:
        return self._directory / f"{_slug(image_digest)}-{_slug(method)}.json"

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return CacheEntry.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "cache_entry_unreadable",
                path=str(path),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def lookup(self, image_digest: str, method: str) -> CacheEntry | None:
        """
        Return the cached entry, or None on a miss.

        Missing, expired and unreadable entries are all misses.
        """
        path = self._entry_path(image_digest, method)
        entry = self._read(path)
        if entry is None:
            logger.debug("cache_miss", image_digest=image_digest, method=method)
            return None

        if entry.is_expired(self._clock(), self._ttl_hours):
            logger.debug(
                "cache_entry_expired",
                image_digest=image_digest,
                method=method,
                age_hours=round(entry.age_hours(self._clock()), 2),
            )
            return None

        logger.debug(
            "cache_hit",
            image_digest=image_digest,
            method=method,
            confidence=entry.confidence,
        )
        return entry

    def store(
        self,
        image_digest: str,
        method: str,
        record: dict[str, Any],
        confidence: float,
        processing_time_ms: int = 0,
        metrics: dict[str, Any] | None = None,
    ) -> Path | None:
        """
        Write an entry, replacing any previous one for the same key.

        Returns:
            Path of the written file, or None if the write failed.
        """
        entry = CacheEntry(
            image_digest=image_digest,
            method=method,
            record=record,
            confidence=confidence,
            created_at=self._clock(),
            processing_time_ms=processing_time_ms,
            metrics=metrics or {},
        )
        path = self._entry_path(image_digest, method)

        with self._lock:
            tmp_name = None
            try:
                fd, tmp_name = tempfile.mkstemp(
                    dir=self._directory, prefix=".tmp-", suffix=".json"
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entry.to_dict(), f, indent=2, default=str)
                os.replace(tmp_name, path)
            except (OSError, TypeError, ValueError) as e:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                logger.error(
                    "cache_write_error",
                    image_digest=image_digest,
                    method=method,
                    error=str(e),
                )
                return None

        logger.info(
            "cache_entry_stored",
            image_digest=image_digest,
            method=method,
            confidence=confidence,
        )
        return path

    def _entry_files(self) -> list[Path]:
        return [p for p in self._directory.glob("*.json") if not p.name.startswith(".tmp-")]

    def purge_expired(self) -> int:
        """
        Delete expired and unreadable entries.

        Returns:
            Number of files removed.
        """
        now = self._clock()
        removed = 0
        with self._lock:
            for path in self._entry_files():
                entry = self._read(path)
                if entry is not None and not entry.is_expired(now, self._ttl_hours):
                    continue
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue

        logger.info("cache_purged", removed=removed, directory=str(self._directory))
        return removed

    def clear(self) -> int:
        """
        Delete every entry.

        Returns:
            Number of files removed.
        """
        removed = 0
        with self._lock:
            for path in self._entry_files():
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue

        logger.info("cache_cleared", removed=removed, directory=str(self._directory))
        return removed
