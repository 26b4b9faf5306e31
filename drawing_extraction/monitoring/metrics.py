"""
Prometheus metrics for the extraction engine.

Each ``ExtractionMetrics`` owns its own ``CollectorRegistry`` so several
controllers (and test cases) can coexist in one process without
duplicate-registration errors.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from drawing_extraction.config import get_settings


# Inference calls on local models take seconds to minutes
DURATION_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)
CONFIDENCE_BUCKETS = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.85, 0.9, 0.95, 1.0)


class TierOutcome(str, Enum):
    """How a tier of the escalation ladder ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    CACHE_HIT = "cache_hit"
    SKIPPED = "skipped"


class ExtractionMetrics:
    """
    High-level metrics collection interface for escalation runs.

    Example:
        metrics = ExtractionMetrics()
        with metrics.track_tier("single"):
            ...
        metrics.record_escalation("multi-pass", confidence=0.92)
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        enabled: bool | None = None,
    ) -> None:
        """
        Initialize the metrics.

        Args:
            registry: Registry to register with; a private one by default.
            enabled: Record samples. Defaults to the monitoring settings.
        """
        self._registry = registry or CollectorRegistry()
        self.enabled = (
            get_settings().monitoring.prometheus_enabled if enabled is None else enabled
        )

        self.tier_runs_total = Counter(
            "extraction_tier_runs_total",
            "Escalation tier executions",
            ["tier", "outcome"],
            registry=self._registry,
        )
        self.tier_duration_seconds = Histogram(
            "extraction_tier_duration_seconds",
            "Wall-clock duration of one escalation tier",
            ["tier"],
            buckets=DURATION_BUCKETS,
            registry=self._registry,
        )
        self.escalations_total = Counter(
            "extraction_escalations_total",
            "Completed escalation runs by final tier",
            ["final_tier"],
            registry=self._registry,
        )
        self.extraction_confidence = Histogram(
            "extraction_confidence",
            "Final confidence of escalation runs",
            ["final_tier"],
            buckets=CONFIDENCE_BUCKETS,
            registry=self._registry,
        )
        self.cache_lookups_total = Counter(
            "extraction_cache_lookups_total",
            "Result cache lookups",
            ["result"],
            registry=self._registry,
        )
        self.inference_failures_total = Counter(
            "extraction_inference_failures_total",
            "Inference failures absorbed by a tier",
            ["tier", "error_type"],
            registry=self._registry,
        )
        self.ready_models = Gauge(
            "extraction_ready_models",
            "Ensemble models the inference server can serve",
            registry=self._registry,
        )
        self.discrepancies_total = Counter(
            "extraction_quantity_discrepancies_total",
            "Quantity discrepancies found by cross-checking",
            ["severity"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Registry holding this instance's metrics."""
        return self._registry

    @contextmanager
    def track_tier(self, tier: str) -> Iterator[None]:
        """Observe the duration of a tier, whatever its outcome."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            if self.enabled:
                self.tier_duration_seconds.labels(tier=tier).observe(
                    time.perf_counter() - start_time
                )

    def record_tier_run(self, tier: str, outcome: TierOutcome) -> None:
        """Record how a tier ended."""
        if self.enabled:
            self.tier_runs_total.labels(tier=tier, outcome=outcome.value).inc()

    def record_escalation(self, final_tier: str, confidence: float) -> None:
        """Record a completed escalation run."""
        if not self.enabled:
            return
        self.escalations_total.labels(final_tier=final_tier).inc()
        self.extraction_confidence.labels(final_tier=final_tier).observe(confidence)

    def record_cache_lookup(self, hit: bool) -> None:
        """Record a cache hit or miss."""
        if self.enabled:
            self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    def record_inference_failure(self, tier: str, error_type: str) -> None:
        """Record an inference failure a tier absorbed."""
        if self.enabled:
            self.inference_failures_total.labels(tier=tier, error_type=error_type).inc()

    def set_ready_models(self, count: int) -> None:
        """Set the number of ensemble models currently available."""
        if self.enabled:
            self.ready_models.set(count)

    def record_discrepancies(self, severities: Iterable[str]) -> None:
        """Count discrepancies by severity."""
        if not self.enabled:
            return
        for severity in severities:
            self.discrepancies_total.labels(severity=severity).inc()

    def get_metrics(self) -> bytes:
        """Prometheus exposition output for this registry."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get Prometheus content type header."""
        return CONTENT_TYPE_LATEST

    def get_sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one sample, 0.0 when it was never recorded."""
        value = self._registry.get_sample_value(name, labels or {})
        return 0.0 if value is None else value
