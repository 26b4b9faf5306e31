"""
Engine configuration, read from the environment by pydantic-settings.

Each concern is a section with its own variable prefix (INFERENCE_,
ENSEMBLE_, CROSS_CHECK_, CACHE_, MONITORING_, LOG_). Every value has a
working default for a local Ollama server.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Log levels accepted by LOG_LEVEL."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Rendering of log events."""

    JSON = "json"
    CONSOLE = "console"


class InferenceSettings(BaseSettings):
    """Local vision inference service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="INFERENCE_",
        extra="ignore",
    )

    base_url: AnyHttpUrl = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible inference server base URL",
    )
    model: str = Field(
        default="glm-ocr",
        description="Default vision model for single-pass extraction",
    )
    max_tokens: Annotated[int, Field(ge=1, le=32768)] = Field(
        default=4096,
        description="Maximum tokens in a model response",
    )
    temperature: Annotated[float, Field(ge=0.0, le=2.0)] = Field(
        default=0.3,
        description="Sampling temperature for extraction requests",
    )
    timeout: Annotated[int, Field(ge=1, le=600)] = Field(
        default=120,
        description="Per-request timeout in seconds",
    )
    max_retries: Annotated[int, Field(ge=1, le=10)] = Field(
        default=3,
        description="Maximum attempts for transient failures",
    )
    retry_min_wait: Annotated[int, Field(ge=0, le=60)] = Field(
        default=2,
        description="Minimum wait time between retries in seconds",
    )
    retry_max_wait: Annotated[int, Field(ge=0, le=300)] = Field(
        default=30,
        description="Maximum wait time between retries in seconds",
    )


class EnsembleModel(BaseModel):
    """One model taking part in multi-model consensus."""

    name: str
    weight: float = 1.0
    temperature: float = 0.3
    description: str = ""
    confidence_bonus: float = 0.0


def _default_ensemble_models() -> list[EnsembleModel]:
    return [
        EnsembleModel(
            name="glm-ocr",
            weight=1.0,
            temperature=0.3,
            description="Fast OCR model",
        ),
        EnsembleModel(
            name="llama3.2-vision:11b",
            weight=1.5,
            temperature=0.2,
            description="Large reasoning model",
            confidence_bonus=0.1,
        ),
        EnsembleModel(
            name="qwen2-vl:7b",
            weight=1.2,
            temperature=0.25,
            description="Document specialist",
            confidence_bonus=0.05,
        ),
    ]


class EnsembleSettings(BaseSettings):
    """
    Escalation ladder and consensus tuning.

    Every weight, ceiling and threshold here is a product-tuned heuristic,
    not a derived value.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENSEMBLE_",
        extra="ignore",
    )

    target_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.90,
        description="Confidence at which the escalation ladder stops",
    )
    multi_pass_count: Annotated[int, Field(ge=2, le=10)] = Field(
        default=3,
        description="Number of single passes in the multi-pass tier",
    )
    parallelism: Annotated[int, Field(ge=1, le=16)] = Field(
        default=3,
        description="Maximum concurrent inference calls within one tier",
    )
    single_pass_base: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.6,
        description="Base confidence for a single-pass extraction",
    )
    single_pass_ceiling: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.85,
        description="Upper bound for single-pass confidence",
    )
    ensemble_ceiling: Annotated[float, Field(ge=0.0, le=1.0)] = Field(
        default=0.95,
        description="Upper bound for any consensus confidence",
    )
    multi_pass_vote_weight: Annotated[float, Field(ge=0.0, le=5.0)] = Field(
        default=1.2,
        description="Vote multiplier applied to the multi-pass agreement score",
    )
    multi_model_vote_weight: Annotated[float, Field(ge=0.0, le=5.0)] = Field(
        default=1.0,
        description="Vote multiplier applied to the multi-model confidence",
    )
    vote_threshold: Annotated[float, Field(ge=0.0, le=10.0)] = Field(
        default=1.0,
        description="Accumulated vote required to keep a member",
    )
    ensemble_bonus: Annotated[float, Field(ge=0.0, le=0.5)] = Field(
        default=0.05,
        description="Bonus added when combining multi-pass and multi-model",
    )
    multi_model_agreement_bonus: Annotated[float, Field(ge=0.0, le=0.5)] = Field(
        default=0.1,
        description="Bonus added when more than one model answered",
    )
    models: list[EnsembleModel] = Field(
        default_factory=_default_ensemble_models,
        description="Models used by the multi-model tier",
    )

    @model_validator(mode="after")
    def validate_ceilings(self) -> "EnsembleSettings":
        """Single-pass ceiling must not exceed the ensemble ceiling."""
        if self.single_pass_ceiling > self.ensemble_ceiling:
            raise ValueError(
                "single_pass_ceiling must be less than or equal to ensemble_ceiling"
            )
        return self


class CrossCheckSettings(BaseSettings):
    """Schedule quantity cross-check thresholds (percent)."""

    model_config = SettingsConfigDict(
        env_prefix="CROSS_CHECK_",
        extra="ignore",
    )

    minor_threshold: Annotated[float, Field(ge=0.0, le=100.0)] = Field(
        default=5.0,
        description="Differences at or below this percentage are not reported",
    )
    moderate_threshold: Annotated[float, Field(ge=0.0, le=100.0)] = Field(
        default=20.0,
        description="Differences above this percentage are major",
    )

    @model_validator(mode="after")
    def validate_order(self) -> "CrossCheckSettings":
        """Minor threshold must not exceed the moderate threshold."""
        if self.minor_threshold > self.moderate_threshold:
            raise ValueError("minor_threshold must not exceed moderate_threshold")
        return self


class CacheSettings(BaseSettings):
    """On-disk result cache."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        extra="ignore",
    )

    enabled: bool = Field(
        default=True,
        description="Consult and update the result cache during extraction",
    )
    directory: Path = Field(
        default=Path("./data/vision-cache"),
        description="Directory holding cached extraction results",
    )
    ttl_hours: Annotated[float, Field(gt=0.0, le=24 * 30)] = Field(
        default=24.0,
        description="Validity window of a cache entry in hours",
    )


class MonitoringSettings(BaseSettings):
    """Prometheus metrics switch."""

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_",
        extra="ignore",
    )

    prometheus_enabled: bool = Field(
        default=True,
        description="Record Prometheus metrics for extraction requests",
    )


class LoggingSettings(BaseSettings):
    """Log level, rendering and optional rotating file."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum level emitted by the root logger",
    )
    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="json for machines, console for terminals",
    )
    file_path: Path | None = Field(
        default=None,
        description="Also write events to this rotating file",
    )
    file_max_size_mb: Annotated[int, Field(ge=1, le=1000)] = Field(
        default=100,
        description="Rotate the log file after this many MB",
    )
    file_backup_count: Annotated[int, Field(ge=1, le=20)] = Field(
        default=5,
        description="Rotated log files kept on disk",
    )
    include_caller: bool = Field(
        default=True,
        description="Add module, function and line to JSON events",
    )

    @field_validator("file_path", mode="before")
    @classmethod
    def create_log_dir(cls, v: Any) -> Path | None:
        """Create the parent directory of the log file; an empty value disables it."""
        if v in (None, ""):
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class Settings(BaseSettings):
    """Top-level settings; sections are nested and also read from `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="drawing-extraction",
        description="Service name attached to log events",
    )
    app_version: str = Field(
        default="1.0.0",
        description="Service version attached to log events",
    )
    app_env: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (APP_ENV)",
    )

    inference: InferenceSettings = Field(default_factory=InferenceSettings)
    ensemble: EnsembleSettings = Field(default_factory=EnsembleSettings)
    cross_check: CrossCheckSettings = Field(default_factory=CrossCheckSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        """True when APP_ENV is production."""
        return self.app_env == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """True when APP_ENV is testing."""
        return self.app_env == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Settings read once per process.

    Call ``get_settings.cache_clear()`` after changing the environment.
    """
    return Settings()
