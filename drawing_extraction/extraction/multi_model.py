"""
Multi-model consensus: several different vision models read the same page.

Each available model answers once, concurrently. Beam and joist marks are
kept by weighted vote (model weight x model confidence); everything else
comes from the model with the best weighted confidence.
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from drawing_extraction.client.inference_client import InferenceError
from drawing_extraction.client.model_registry import ModelRegistry
from drawing_extraction.config import EnsembleModel, get_logger, get_settings
from drawing_extraction.extraction.confidence import model_confidence
from drawing_extraction.extraction.models import VOTED_FIELDS, ExtractionRecord, GridInfo
from drawing_extraction.extraction.single_pass import SinglePassExtractor
from drawing_extraction.extraction.voting import entries_with_votes


logger = get_logger(__name__)


@dataclass(slots=True)
class ModelRun:
    """
    One model's contribution.

    Attributes:
        model: Configured model.
        record: Parsed record, empty when the model failed.
        confidence: Per-model confidence, 0.0 when the model failed.
        processing_time_ms: Time spent on the model call.
        error: Failure message, if the call failed.
    """

    model: EnsembleModel
    record: ExtractionRecord
    confidence: float
    processing_time_ms: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """True when the model answered."""
        return self.error is None

    @property
    def weighted_confidence(self) -> float:
        """Confidence scaled by the model's vote weight."""
        return self.confidence * self.model.weight

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "model": self.model.name,
            "record": self.record.to_dict(),
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ModelPerformance:
    """Timing summary across the models of one run."""

    total_time_ms: int = 0
    fastest_model: str = ""
    most_confident: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total_time_ms": self.total_time_ms,
            "fastest_model": self.fastest_model,
            "most_confident": self.most_confident,
        }


@dataclass(slots=True)
class MultiModelResult:
    """
    Consensus of several models.

    Attributes:
        consensus: Merged record.
        confidence: Weight-averaged model confidence plus agreement bonus.
        model_results: Per-model runs keyed by model name.
        performance: Timing summary.
    """

    consensus: ExtractionRecord
    confidence: float
    model_results: dict[str, ModelRun] = field(default_factory=dict)
    performance: ModelPerformance = field(default_factory=ModelPerformance)

    @property
    def answered_models(self) -> list[str]:
        """Names of the models that answered."""
        return [name for name, run in self.model_results.items() if run.succeeded]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "consensus": self.consensus.to_dict(),
            "confidence": self.confidence,
            "model_results": {k: v.to_dict() for k, v in self.model_results.items()},
            "performance": self.performance.to_dict(),
        }


class MultiModelAnalyzer:
    """
    Runs every available ensemble model once and merges their answers.

    Example:
        analyzer = MultiModelAnalyzer(SinglePassExtractor(client), ModelRegistry(client))
        result = await analyzer.analyze_with_multiple_models(path, 3, "structural")
    """

    def __init__(
        self,
        single_pass: SinglePassExtractor,
        registry: ModelRegistry,
        parallelism: int | None = None,
        vote_threshold: float | None = None,
        agreement_bonus: float | None = None,
        confidence_ceiling: float | None = None,
    ) -> None:
        settings = get_settings()

        self._single_pass = single_pass
        self._registry = registry
        self._parallelism = parallelism or settings.ensemble.parallelism
        self._vote_threshold = (
            settings.ensemble.vote_threshold if vote_threshold is None else vote_threshold
        )
        self._agreement_bonus = (
            settings.ensemble.multi_model_agreement_bonus
            if agreement_bonus is None
            else agreement_bonus
        )
        self._ceiling = (
            settings.ensemble.ensemble_ceiling
            if confidence_ceiling is None
            else confidence_ceiling
        )

    @property
    def registry(self) -> ModelRegistry:
        """Registry consulted for model availability."""
        return self._registry

    async def ensure_models_available(self) -> list[EnsembleModel]:
        """Configured models the inference server can serve."""
        return await self._registry.ensure_models_available()

    async def _run_model(
        self,
        model: EnsembleModel,
        image: Path,
        page_number: int,
        discipline: str | None,
        grid_info: GridInfo | None,
    ) -> ModelRun:
        start_time = time.perf_counter()
        try:
            result = await self._single_pass.extract(
                image,
                page_number,
                discipline=discipline,
                grid_info=grid_info,
                model=model.name,
                temperature=model.temperature,
            )
        except InferenceError as e:
            logger.warning(
                "model_run_failed",
                model=model.name,
                page_number=page_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ModelRun(
                model=model,
                record=ExtractionRecord.empty(page_number),
                confidence=0.0,
                processing_time_ms=int((time.perf_counter() - start_time) * 1000),
                error=str(e),
            )

        return ModelRun(
            model=model,
            record=result.record,
            confidence=model_confidence(
                result.record, bonus=model.confidence_bonus, ceiling=self._ceiling
            ),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )

    async def analyze_with_multiple_models(
        self,
        image: Path,
        page_number: int,
        discipline: str | None = None,
        grid_info: GridInfo | None = None,
        models: list[EnsembleModel] | None = None,
    ) -> MultiModelResult:
        """
        Run each available model once and build the weighted consensus.

        Args:
            image: Path to the page image.
            page_number: Page number recorded on the result.
            discipline: Drawing discipline.
            grid_info: Grid metadata for the prompt.
            models: Models to run; availability is checked when omitted.

        Returns:
            MultiModelResult; confidence 0.0 when no model answered.
        """
        start_time = time.perf_counter()
        if models is None:
            models = await self.ensure_models_available()

        semaphore = asyncio.Semaphore(self._parallelism)

        async def run_limited(model: EnsembleModel) -> ModelRun:
            async with semaphore:
                return await self._run_model(
                    model, image, page_number, discipline, grid_info
                )

        runs = await asyncio.gather(*(run_limited(m) for m in models))
        model_results = {run.model.name: run for run in runs}

        consensus = self.build_consensus(list(runs), page_number)
        if grid_info is not None and consensus.grid_info is None:
            consensus.grid_info = grid_info
        confidence = self.overall_confidence(list(runs))
        total_ms = int((time.perf_counter() - start_time) * 1000)
        performance = self._performance(list(runs), total_ms)

        logger.info(
            "multi_model_complete",
            page_number=page_number,
            models=[m.name for m in models],
            answered=[r.model.name for r in runs if r.succeeded],
            confidence=confidence,
            fastest_model=performance.fastest_model,
            most_confident=performance.most_confident,
            processing_time_ms=total_ms,
        )

        return MultiModelResult(
            consensus=consensus,
            confidence=confidence,
            model_results=model_results,
            performance=performance,
        )

    def build_consensus(self, runs: list[ModelRun], page_number: int) -> ExtractionRecord:
        """
        Weighted vote for beams and joists over the best model's record.

        The best model is the successful run with the highest
        ``confidence x weight``; ties go to the earlier configured model.
        """
        answered = [run for run in runs if run.succeeded]
        if not answered:
            return ExtractionRecord.empty(page_number)

        best = answered[0]
        for run in answered[1:]:
            if run.weighted_confidence > best.weighted_confidence:
                best = run

        consensus = copy.deepcopy(best.record)
        consensus.page_number = page_number
        for field_name in VOTED_FIELDS:
            kept, _ = entries_with_votes(
                ((run.record.members(field_name), run.weighted_confidence) for run in answered),
                threshold=self._vote_threshold,
            )
            setattr(consensus, field_name, kept)
        return consensus

    def overall_confidence(self, runs: list[ModelRun]) -> float:
        """Weight-averaged confidence plus a bonus when several models answered."""
        answered = [run for run in runs if run.succeeded]
        if not answered:
            return 0.0

        total_weight = sum(run.model.weight for run in runs)
        weighted_sum = sum(run.confidence * run.model.weight for run in runs)
        base = weighted_sum / total_weight if total_weight > 0 else 0.0
        bonus = self._agreement_bonus if len(answered) > 1 else 0.0
        return round(min(self._ceiling, base + bonus), 6)

    @staticmethod
    def _performance(runs: list[ModelRun], total_ms: int) -> ModelPerformance:
        if not runs:
            return ModelPerformance(total_time_ms=total_ms)
        fastest = min(runs, key=lambda run: run.processing_time_ms)
        confident = max(runs, key=lambda run: run.confidence)
        return ModelPerformance(
            total_time_ms=total_ms,
            fastest_model=fastest.model.name,
            most_confident=confident.model.name if confident.confidence > 0 else "",
        )
