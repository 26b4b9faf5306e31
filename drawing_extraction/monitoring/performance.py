"""
Session-level performance tracking for extraction runs.

Collects one ``PageMetrics`` per extracted page and summarises the
session: averages, distributions, tiers used and tuning recommendations.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from drawing_extraction.config import get_logger


logger = get_logger(__name__)


def completeness_score(counts: dict[str, int]) -> float:
    """
    How fully a page was read, from 0.0 to 1.0.

    Weighted population of beams and joists (0.3 each), schedules and
    dimensions (0.2 each), halved and capped at 1.0.
    """
    weighted = (
        counts.get("beams", 0) * 0.3
        + counts.get("joists", 0) * 0.3
        + counts.get("schedules", 0) * 0.2
        + counts.get("dimensions", 0) * 0.2
    )
    return round(min(1.0, weighted / 2), 6)


@dataclass(slots=True)
class PageMetrics:
    """
    Quality and cost figures for one extracted page.

    Attributes:
        tier: Tier that produced the final result.
        confidence: Final confidence.
        estimated_accuracy: Conservative accuracy estimate.
        processing_time_ms: Total time spent on the page.
        speed_penalty: Time relative to the single-pass baseline.
        processing_cost: Cost class of the tier.
        beams_found: Number of beams in the final record.
        joists_found: Number of joists in the final record.
        schedules_found: Number of schedules in the final record.
        dimensions_found: Number of dimensions in the final record.
        completeness: Completeness score of the final record.
    """

    tier: str
    confidence: float
    estimated_accuracy: float
    processing_time_ms: int
    speed_penalty: float = 1.0
    processing_cost: str = "low"
    beams_found: int = 0
    joists_found: int = 0
    schedules_found: int = 0
    dimensions_found: int = 0
    completeness: float = 0.0

    @classmethod
    def from_counts(
        cls,
        counts: dict[str, int],
        tier: str,
        confidence: float,
        estimated_accuracy: float,
        processing_time_ms: int,
        speed_penalty: float = 1.0,
        processing_cost: str = "low",
    ) -> PageMetrics:
        """Build metrics from a record's population counts."""
        return cls(
            tier=tier,
            confidence=confidence,
            estimated_accuracy=estimated_accuracy,
            processing_time_ms=processing_time_ms,
            speed_penalty=speed_penalty,
            processing_cost=processing_cost,
            beams_found=counts.get("beams", 0),
            joists_found=counts.get("joists", 0),
            schedules_found=counts.get("schedules", 0),
            dimensions_found=counts.get("dimensions", 0),
            completeness=completeness_score(counts),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "tier": self.tier,
            "confidence": self.confidence,
            "estimated_accuracy": self.estimated_accuracy,
            "processing_time_ms": self.processing_time_ms,
            "speed_penalty": self.speed_penalty,
            "processing_cost": self.processing_cost,
            "quality_indicators": {
                "beams_found": self.beams_found,
                "joists_found": self.joists_found,
                "schedules_found": self.schedules_found,
                "dimensions_found": self.dimensions_found,
                "completeness_score": self.completeness,
            },
        }


@dataclass(frozen=True, slots=True)
class Distribution:
    """Summary statistics of one metric across a session."""

    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    median: float = 0.0

    @classmethod
    def of(cls, values: list[float]) -> Distribution:
        if not values:
            return cls()
        ordered = sorted(values)
        return cls(
            min=ordered[0],
            max=ordered[-1],
            avg=sum(ordered) / len(ordered),
            median=ordered[len(ordered) // 2],
        )

    def to_dict(self) -> dict[str, float]:
        return {"min": self.min, "max": self.max, "avg": self.avg, "median": self.median}


class PerformanceTracker:
    """
    Accumulates page metrics for the current session.

    Thread-safe; pages extracted concurrently may record from any thread.
    """

    LOW_CONFIDENCE = 0.80
    LOW_ACCURACY = 0.85
    LOW_COMPLETENESS = 0.60
    EXCELLENT = 0.90

    def __init__(self) -> None:
        self._pages: list[PageMetrics] = []
        self._lock = threading.Lock()

    @property
    def pages(self) -> list[PageMetrics]:
        """Metrics recorded so far."""
        with self._lock:
            return list(self._pages)

    def record(self, metrics: PageMetrics) -> None:
        """Add one page's metrics to the session."""
        with self._lock:
            self._pages.append(metrics)

    def reset(self) -> None:
        """Forget all recorded pages."""
        with self._lock:
            self._pages.clear()

    def recommendations(
        self,
        avg_confidence: float,
        avg_accuracy: float,
        avg_completeness: float,
    ) -> list[str]:
        """Tuning advice for the observed averages."""
        advice: list[str] = []
        if avg_confidence < self.LOW_CONFIDENCE:
            advice.append(
                "Consider using multi-pass or multi-model extraction for better confidence"
            )
        if avg_accuracy < self.LOW_ACCURACY:
            advice.append(
                "Accuracy below target - consider ensemble methods for critical projects"
            )
        if avg_completeness < self.LOW_COMPLETENESS:
            advice.append("Low completeness scores - check image quality and preprocessing")
        if avg_confidence >= self.EXCELLENT and avg_accuracy >= self.EXCELLENT:
            advice.append("Excellent performance - current method is working well")
        if not advice:
            advice.append("Performance is adequate - monitor for consistency")
        return advice

    def generate_report(self) -> dict[str, Any]:
        """
        Summarise the session.

        Returns:
            Dictionary with ``session_summary``, ``recommendations``,
            ``accuracy_analysis`` and ``performance_analysis`` sections.
        """
        pages = self.pages
        if not pages:
            return {
                "session_summary": {"message": "No metrics recorded this session"},
                "recommendations": ["Run some extractions to generate metrics"],
                "accuracy_analysis": {},
                "performance_analysis": {},
            }

        count = len(pages)
        avg_confidence = sum(p.confidence for p in pages) / count
        avg_accuracy = sum(p.estimated_accuracy for p in pages) / count
        avg_time = sum(p.processing_time_ms for p in pages) / count
        avg_completeness = sum(p.completeness for p in pages) / count

        tiers_used: dict[str, int] = {}
        for page in pages:
            tiers_used[page.tier] = tiers_used.get(page.tier, 0) + 1

        return {
            "session_summary": {
                "pages_processed": count,
                "average_confidence": round(avg_confidence, 2),
                "average_accuracy": round(avg_accuracy, 2),
                "average_processing_time_ms": round(avg_time),
                "average_completeness": round(avg_completeness, 2),
                "tiers_used": tiers_used,
            },
            "recommendations": self.recommendations(
                avg_confidence, avg_accuracy, avg_completeness
            ),
            "accuracy_analysis": {
                "confidence_distribution": Distribution.of(
                    [p.confidence for p in pages]
                ).to_dict(),
                "accuracy_distribution": Distribution.of(
                    [p.estimated_accuracy for p in pages]
                ).to_dict(),
                "quality_distribution": Distribution.of(
                    [p.completeness for p in pages]
                ).to_dict(),
            },
            "performance_analysis": {
                "processing_time_distribution": Distribution.of(
                    [float(p.processing_time_ms) for p in pages]
                ).to_dict(),
                "speed_penalty_distribution": Distribution.of(
                    [p.speed_penalty for p in pages]
                ).to_dict(),
            },
        }

    def save_report(self, path: str | Path) -> Path:
        """Write the session metrics and report as JSON."""
        report_path = Path(path)
        report_path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_metrics": [p.to_dict() for p in self.pages],
            "report": self.generate_report(),
        }
        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        logger.info(
            "performance_report_saved",
            path=str(report_path),
            pages=len(payload["session_metrics"]),
        )
        return report_path
