"""
Unit tests for Settings classes.

Tests cover:
- Section defaults
- Environment variable loading per prefix
- Validation constraints and cross-field validators
- Settings caching behavior
"""

import pytest
from pydantic import ValidationError

from drawing_extraction.config.settings import (
    CacheSettings,
    CrossCheckSettings,
    EnsembleSettings,
    Environment,
    InferenceSettings,
    LoggingSettings,
    Settings,
    get_settings,
)


class TestInferenceSettings:
    """Tests for InferenceSettings class."""

    def test_default_values(self) -> None:
        """Defaults point at a local Ollama server."""
        settings = InferenceSettings()

        assert str(settings.base_url).startswith("http://localhost:11434")
        assert settings.model == "glm-ocr"
        assert settings.max_tokens == 4096
        assert settings.max_retries == 3

    def test_env_prefix_loading(self, monkeypatch) -> None:
        """Test loading from environment variables with INFERENCE_ prefix."""
        monkeypatch.setenv("INFERENCE_BASE_URL", "http://gpu-box:1234/v1")
        monkeypatch.setenv("INFERENCE_MODEL", "qwen2-vl:7b")
        monkeypatch.setenv("INFERENCE_TIMEOUT", "300")

        settings = InferenceSettings()

        assert str(settings.base_url).startswith("http://gpu-box:1234")
        assert settings.model == "qwen2-vl:7b"
        assert settings.timeout == 300

    def test_validation_constraints(self) -> None:
        with pytest.raises(ValidationError):
            InferenceSettings(max_tokens=0)
        with pytest.raises(ValidationError):
            InferenceSettings(temperature=3.0)


class TestEnsembleSettings:
    """Tests for EnsembleSettings class."""

    def test_default_values(self) -> None:
        settings = EnsembleSettings()

        assert settings.target_confidence == 0.90
        assert settings.multi_pass_count == 3
        assert settings.multi_pass_vote_weight == 1.2
        assert settings.vote_threshold == 1.0
        assert [m.name for m in settings.models] == [
            "glm-ocr",
            "llama3.2-vision:11b",
            "qwen2-vl:7b",
        ]
        assert [m.weight for m in settings.models] == [1.0, 1.5, 1.2]

    def test_env_prefix_loading(self, monkeypatch) -> None:
        monkeypatch.setenv("ENSEMBLE_TARGET_CONFIDENCE", "0.8")
        monkeypatch.setenv("ENSEMBLE_MULTI_PASS_COUNT", "5")

        settings = EnsembleSettings()

        assert settings.target_confidence == 0.8
        assert settings.multi_pass_count == 5

    def test_models_from_json_env(self, monkeypatch) -> None:
        """Complex fields are parsed from JSON."""
        monkeypatch.setenv(
            "ENSEMBLE_MODELS", '[{"name": "minicpm-v", "weight": 2.0}]'
        )

        settings = EnsembleSettings()

        assert len(settings.models) == 1
        assert settings.models[0].name == "minicpm-v"
        assert settings.models[0].temperature == 0.3

    def test_single_pass_ceiling_must_not_exceed_ensemble(self) -> None:
        with pytest.raises(ValidationError, match="single_pass_ceiling"):
            EnsembleSettings(single_pass_ceiling=0.97, ensemble_ceiling=0.95)

    def test_multi_pass_needs_two_passes(self) -> None:
        with pytest.raises(ValidationError):
            EnsembleSettings(multi_pass_count=1)


class TestCrossCheckSettings:
    """Tests for CrossCheckSettings class."""

    def test_default_values(self) -> None:
        settings = CrossCheckSettings()
        assert settings.minor_threshold == 5.0
        assert settings.moderate_threshold == 20.0

    def test_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError, match="minor_threshold"):
            CrossCheckSettings(minor_threshold=30, moderate_threshold=20)


class TestCacheSettings:
    """Tests for CacheSettings class."""

    def test_default_values(self) -> None:
        settings = CacheSettings()
        assert settings.enabled is True
        assert settings.ttl_hours == 24.0
        assert settings.directory.name == "vision-cache"

    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            CacheSettings(ttl_hours=0)


class TestLoggingSettings:
    """Tests for LoggingSettings class."""

    def test_file_path_creates_directory(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "extraction.log"

        settings = LoggingSettings(file_path=str(log_file))

        assert settings.file_path == log_file
        assert log_file.parent.is_dir()

    def test_empty_file_path_is_none(self) -> None:
        assert LoggingSettings(file_path="").file_path is None


class TestSettings:
    """Tests for the aggregated Settings class."""

    def test_environment_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")

        settings = Settings()

        assert settings.app_env == Environment.PRODUCTION
        assert settings.is_production is True
        assert settings.is_testing is False

    def test_sections_present(self) -> None:
        settings = Settings()
        assert settings.cross_check.minor_threshold == 5.0
        assert settings.monitoring.prometheus_enabled is True

    def test_get_settings_is_cached(self) -> None:
        """get_settings returns the same instance until the cache is cleared."""
        first = get_settings()
        assert get_settings() is first

        get_settings.cache_clear()
        assert get_settings() is not first
