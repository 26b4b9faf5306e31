"""
Monitoring module for the extraction engine.

Provides Prometheus metrics for escalation runs and a session-level
performance tracker with quality reports.
"""

from drawing_extraction.monitoring.metrics import (
    CONFIDENCE_BUCKETS,
    DURATION_BUCKETS,
    ExtractionMetrics,
    TierOutcome,
)
from drawing_extraction.monitoring.performance import (
    Distribution,
    PageMetrics,
    PerformanceTracker,
    completeness_score,
)


__all__ = [
    "CONFIDENCE_BUCKETS",
    "DURATION_BUCKETS",
    "ExtractionMetrics",
    "TierOutcome",
    "Distribution",
    "PageMetrics",
    "PerformanceTracker",
    "completeness_score",
]
