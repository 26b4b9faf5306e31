"""
Unit tests for Prometheus extraction metrics.

Tests cover:
- Per-instance registries
- Tier, escalation, cache and discrepancy counters
- Disabled metrics recording nothing
"""

import pytest

from drawing_extraction.monitoring.metrics import ExtractionMetrics, TierOutcome


# ---------------------------------------------------------------------------
# TestExtractionMetrics
# ---------------------------------------------------------------------------


class TestExtractionMetrics:

    def test_instances_do_not_collide(self) -> None:
        first = ExtractionMetrics(enabled=True)
        second = ExtractionMetrics(enabled=True)

        first.record_cache_lookup(hit=True)

        assert first.get_sample("extraction_cache_lookups_total", {"result": "hit"}) == 1.0
        assert second.get_sample("extraction_cache_lookups_total", {"result": "hit"}) == 0.0

    def test_tier_runs_and_duration(self) -> None:
        metrics = ExtractionMetrics(enabled=True)

        with metrics.track_tier("single"):
            pass
        metrics.record_tier_run("single", TierOutcome.SUCCESS)

        assert metrics.get_sample(
            "extraction_tier_runs_total", {"tier": "single", "outcome": "success"}
        ) == 1.0
        assert metrics.get_sample(
            "extraction_tier_duration_seconds_count", {"tier": "single"}
        ) == 1.0

    def test_duration_observed_on_error(self) -> None:
        metrics = ExtractionMetrics(enabled=True)

        with pytest.raises(RuntimeError):
            with metrics.track_tier("multi-pass"):
                raise RuntimeError("boom")

        assert metrics.get_sample(
            "extraction_tier_duration_seconds_count", {"tier": "multi-pass"}
        ) == 1.0

    def test_escalation_and_confidence(self) -> None:
        metrics = ExtractionMetrics(enabled=True)
        metrics.record_escalation("multi-pass", confidence=0.92)

        assert metrics.get_sample(
            "extraction_escalations_total", {"final_tier": "multi-pass"}
        ) == 1.0
        assert metrics.get_sample(
            "extraction_confidence_sum", {"final_tier": "multi-pass"}
        ) == pytest.approx(0.92)

    def test_failures_models_and_discrepancies(self) -> None:
        metrics = ExtractionMetrics(enabled=True)
        metrics.record_inference_failure("single", "InferenceTimeoutError")
        metrics.set_ready_models(2)
        metrics.record_discrepancies(["major", "minor", "major"])

        assert metrics.get_sample(
            "extraction_inference_failures_total",
            {"tier": "single", "error_type": "InferenceTimeoutError"},
        ) == 1.0
        assert metrics.get_sample("extraction_ready_models") == 2.0
        assert metrics.get_sample(
            "extraction_quantity_discrepancies_total", {"severity": "major"}
        ) == 2.0

    def test_exposition_output(self) -> None:
        metrics = ExtractionMetrics(enabled=True)
        metrics.record_tier_run("single", TierOutcome.CACHE_HIT)

        output = metrics.get_metrics().decode("utf-8")

        assert "extraction_tier_runs_total" in output
        assert 'outcome="cache_hit"' in output
        assert metrics.get_content_type().startswith("text/plain")

    def test_disabled_records_nothing(self) -> None:
        metrics = ExtractionMetrics(enabled=False)

        with metrics.track_tier("single"):
            pass
        metrics.record_tier_run("single", TierOutcome.SUCCESS)
        metrics.record_escalation("single", 0.85)
        metrics.set_ready_models(3)

        assert metrics.get_sample(
            "extraction_tier_runs_total", {"tier": "single", "outcome": "success"}
        ) == 0.0
        assert metrics.get_sample("extraction_ready_models") == 0.0

    def test_enabled_flag_from_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("MONITORING_PROMETHEUS_ENABLED", "false")
        assert ExtractionMetrics().enabled is False
