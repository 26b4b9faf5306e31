"""
Confidence-gated escalation across extraction tiers.

Tiers run in order of increasing cost:

    single -> multi-pass -> multi-model -> full-ensemble

After each tier the controller stops as soon as the confidence reaches the
target. Multi-model needs at least two ready models; with fewer, the
multi-pass result is final. The full ensemble is the last resort and is
returned whatever its confidence.

Every tier result is cached per image digest and method identifier, so a
page re-submitted within the cache window is served without inference.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from drawing_extraction.client.inference_client import (
    InferenceClient,
    InferenceError,
    InferenceValidationError,
)
from drawing_extraction.client.model_registry import ModelRegistry
from drawing_extraction.config import EnsembleModel, get_logger, get_settings, page_context
from drawing_extraction.extraction.collaborators import (
    GridAnalyzer,
    ImagePreprocessor,
    PreprocessingOptions,
)
from drawing_extraction.extraction.confidence import estimate_accuracy
from drawing_extraction.extraction.consensus import WeightedConsensusCombiner
from drawing_extraction.extraction.models import ExtractionRecord, ExtractionTier, GridInfo
from drawing_extraction.extraction.multi_model import MultiModelAnalyzer, MultiModelResult
from drawing_extraction.extraction.multi_pass import MultiPassExtractor, MultiPassResult
from drawing_extraction.extraction.prompts import PROMPT_VERSION
from drawing_extraction.extraction.single_pass import SinglePassExtractor
from drawing_extraction.monitoring.metrics import ExtractionMetrics, TierOutcome
from drawing_extraction.monitoring.performance import PageMetrics, PerformanceTracker
from drawing_extraction.storage.result_cache import ResultCache, method_identifier
from drawing_extraction.utils import image_digest


logger = get_logger(__name__)

MIN_MODELS_FOR_MULTI_MODEL = 2

# assess_accuracy_need thresholds on the single-pass baseline
SINGLE_SUFFICIENT_CONFIDENCE = 0.85
MULTI_PASS_SUFFICIENT_CONFIDENCE = 0.75


@dataclass(frozen=True, slots=True)
class TierProfile:
    """Cost class and intended use of one tier."""

    processing_cost: str
    resource_note: str
    recommended_uses: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "processing_cost": self.processing_cost,
            "resource_note": self.resource_note,
            "recommended_uses": list(self.recommended_uses),
        }


TIER_PROFILES: dict[ExtractionTier, TierProfile] = {
    ExtractionTier.SINGLE: TierProfile(
        processing_cost="low",
        resource_note="2.2GB (glm-ocr only)",
        recommended_uses=(
            "Quick estimates",
            "Preliminary analysis",
            "High-volume processing",
        ),
    ),
    ExtractionTier.MULTI_PASS: TierProfile(
        processing_cost="medium",
        resource_note="2.2GB (glm-ocr only)",
        recommended_uses=(
            "Important projects",
            "Quality verification",
            "Moderate accuracy needs",
        ),
    ),
    ExtractionTier.MULTI_MODEL: TierProfile(
        processing_cost="high",
        resource_note="11GB+ (multiple models)",
        recommended_uses=(
            "Critical projects",
            "Final estimates",
            "High accuracy requirements",
        ),
    ),
    ExtractionTier.FULL_ENSEMBLE: TierProfile(
        processing_cost="high",
        resource_note="11GB+ (multiple models)",
        recommended_uses=(
            "Mission-critical projects",
            "Material ordering",
            "Maximum accuracy needed",
        ),
    ),
}


@dataclass(frozen=True, slots=True)
class PerformanceBreakdown:
    """
    Cost of an escalation run.

    Attributes:
        tier_times_ms: Wall-clock time per tier that ran, in run order.
        speed_penalty: Cumulative tier time over the single-pass baseline.
        accuracy_gain: Final confidence minus the single-pass confidence.
        processing_cost: Cost class of the final tier.
        resource_note: Disk and memory footprint of the final tier.
        recommended_uses: Use cases the final tier suits.
    """

    tier_times_ms: dict[str, int]
    speed_penalty: float
    accuracy_gain: float
    processing_cost: str
    resource_note: str
    recommended_uses: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "tier_times_ms": dict(self.tier_times_ms),
            "speed_penalty": self.speed_penalty,
            "accuracy_gain": self.accuracy_gain,
            "processing_cost": self.processing_cost,
            "resource_note": self.resource_note,
            "recommended_uses": list(self.recommended_uses),
        }


@dataclass(frozen=True, slots=True)
class EscalationResult:
    """
    Final answer of the escalation ladder.

    Attributes:
        record: Extraction record of the final tier.
        confidence: Confidence of the final tier.
        estimated_accuracy: Confidence scaled by the tier's accuracy multiplier.
        processing_time_ms: Total wall-clock time including collaborators.
        tier: Tier that produced the result.
        breakdown: Timing and cost breakdown.
        cache_hits: Tiers served from the cache.
    """

    record: ExtractionRecord
    confidence: float
    estimated_accuracy: float
    processing_time_ms: int
    tier: ExtractionTier
    breakdown: PerformanceBreakdown
    cache_hits: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record": self.record.to_dict(),
            "confidence": self.confidence,
            "estimated_accuracy": self.estimated_accuracy,
            "processing_time_ms": self.processing_time_ms,
            "tier": self.tier.value,
            "breakdown": self.breakdown.to_dict(),
            "cache_hits": list(self.cache_hits),
        }


@dataclass(frozen=True, slots=True)
class AccuracyAssessment:
    """Recommended tier for a page, judged from its single-pass baseline."""

    recommended_tier: ExtractionTier
    baseline_confidence: float
    reasoning: str
    expected_improvement: float
    cost_justification: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "recommended_tier": self.recommended_tier.value,
            "baseline_confidence": self.baseline_confidence,
            "reasoning": self.reasoning,
            "expected_improvement": self.expected_improvement,
            "cost_justification": self.cost_justification,
        }


@dataclass(slots=True)
class _PageContext:
    image: Path
    page_number: int
    discipline: str | None
    grid_info: GridInfo | None
    digest: str | None


@dataclass(slots=True)
class _TierRun:
    tier: ExtractionTier
    record: ExtractionRecord
    confidence: float
    elapsed_ms: int
    cached: bool = False
    details: dict[str, Any] = field(default_factory=dict)


_TierOutput = tuple[ExtractionRecord, float, dict[str, Any]]


class EscalationController:
    """
    Spends as little inference as needed to reach a target confidence.

    Example:
        async with InferenceClient() as client:
            controller = EscalationController.from_settings(client)
            result = await controller.extract(Path("page-3.png"), 3, "Structural")
            print(result.tier, result.confidence)
    """

    def __init__(
        self,
        client: InferenceClient,
        registry: ModelRegistry | None = None,
        cache: ResultCache | None = None,
        metrics: ExtractionMetrics | None = None,
        tracker: PerformanceTracker | None = None,
        preprocessor: ImagePreprocessor | None = None,
        grid_analyzer: GridAnalyzer | None = None,
        preprocessing_options: PreprocessingOptions | None = None,
        target_confidence: float | None = None,
        single_pass: SinglePassExtractor | None = None,
        multi_pass: MultiPassExtractor | None = None,
        multi_model: MultiModelAnalyzer | None = None,
        combiner: WeightedConsensusCombiner | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            client: Inference client shared by every tier.
            registry: Ensemble model registry.
            cache: Result cache; caching is off when omitted.
            metrics: Prometheus metrics sink.
            tracker: Session performance tracker.
            preprocessor: Optional image enhancement service.
            grid_analyzer: Optional grid counting service.
            preprocessing_options: Options passed to the preprocessor.
            target_confidence: Default confidence at which to stop.
            single_pass: Single-pass extractor override.
            multi_pass: Multi-pass extractor override.
            multi_model: Multi-model analyzer override.
            combiner: Consensus combiner override.
        """
        settings = get_settings()

        self._single_pass = single_pass or SinglePassExtractor(client)
        self._multi_pass = multi_pass or MultiPassExtractor(self._single_pass)
        self._multi_model = multi_model or MultiModelAnalyzer(
            self._single_pass, registry or ModelRegistry(client)
        )
        self._combiner = combiner or WeightedConsensusCombiner()
        self._cache = cache
        self._metrics = metrics or ExtractionMetrics()
        self._tracker = tracker
        self._preprocessor = preprocessor
        self._grid_analyzer = grid_analyzer
        self._preprocessing_options = preprocessing_options or PreprocessingOptions()
        self._target_confidence = (
            settings.ensemble.target_confidence
            if target_confidence is None
            else target_confidence
        )

    @classmethod
    def from_settings(cls, client: InferenceClient, **kwargs: Any) -> EscalationController:
        """Controller with the cache configured from settings."""
        cache_settings = get_settings().cache
        if "cache" not in kwargs and cache_settings.enabled:
            kwargs["cache"] = ResultCache(cache_settings.directory, cache_settings.ttl_hours)
        return cls(client, **kwargs)

    @property
    def target_confidence(self) -> float:
        return self._target_confidence

    @property
    def metrics(self) -> ExtractionMetrics:
        return self._metrics

    @staticmethod
    def cost_profile(tier: ExtractionTier) -> TierProfile:
        """Cost class, footprint and recommended uses of a tier."""
        return TIER_PROFILES[tier]

    async def extract(
        self,
        image: Path | str,
        page_number: int,
        discipline: str | None = None,
        target_confidence: float | None = None,
    ) -> EscalationResult:
        """
        Extract a page, escalating until the target confidence is reached.

        Args:
            image: Path to the page image.
            page_number: Page number recorded on the result.
            discipline: Drawing discipline, selects the prompt.
            target_confidence: Override of the default target.

        Returns:
            EscalationResult of the first tier that met the target, or of
            the last tier that ran.

        Raises:
            InferenceValidationError: If the image file does not exist.
        """
        target = self._target_confidence if target_confidence is None else target_confidence
        with page_context(page_number=page_number, discipline=discipline):
            return await self._escalate(Path(image), page_number, discipline, target)

    async def _escalate(
        self,
        image: Path,
        page_number: int,
        discipline: str | None,
        target: float,
    ) -> EscalationResult:
        start_time = time.perf_counter()
        context = await self._prepare(image, page_number, discipline)

        runs = [await self._run_single(context)]
        if runs[-1].confidence >= target:
            return self._finish(runs, start_time, target)

        multi_pass = await self._run_multi_pass(context)
        runs.append(multi_pass)
        if multi_pass.confidence >= target:
            return self._finish(runs, start_time, target)

        ready = await self._multi_model.ensure_models_available()
        self._metrics.set_ready_models(len(ready))
        if len(ready) < MIN_MODELS_FOR_MULTI_MODEL:
            logger.info(
                "escalation_short_circuit",
                page_number=page_number,
                ready_models=[m.name for m in ready],
                reason="insufficient_models",
            )
            self._metrics.record_tier_run(ExtractionTier.MULTI_MODEL.value, TierOutcome.SKIPPED)
            return self._finish(runs, start_time, target)

        multi_model = await self._run_multi_model(context, ready)
        runs.append(multi_model)
        if multi_model.confidence >= target:
            return self._finish(runs, start_time, target)

        runs.append(await self._run_full_ensemble(context, multi_pass, multi_model, ready))
        return self._finish(runs, start_time, target)

    async def assess_accuracy_need(
        self,
        image: Path | str,
        page_number: int,
        discipline: str | None = None,
    ) -> AccuracyAssessment:
        """
        Recommend a tier from a single-pass baseline.

        Returns:
            AccuracyAssessment with reasoning, expected confidence gain and
            cost justification.
        """
        context = await self._prepare(Path(image), page_number, discipline)
        baseline = (await self._run_single(context)).confidence

        if baseline >= SINGLE_SUFFICIENT_CONFIDENCE:
            assessment = AccuracyAssessment(
                recommended_tier=ExtractionTier.SINGLE,
                baseline_confidence=baseline,
                reasoning="Single model confidence is already high",
                expected_improvement=0.0,
                cost_justification="No additional processing needed",
            )
        elif baseline >= MULTI_PASS_SUFFICIENT_CONFIDENCE:
            assessment = AccuracyAssessment(
                recommended_tier=ExtractionTier.MULTI_PASS,
                baseline_confidence=baseline,
                reasoning="Multi-pass likely to reach target accuracy",
                expected_improvement=0.1,
                cost_justification="3x slower but uses same model",
            )
        else:
            assessment = AccuracyAssessment(
                recommended_tier=ExtractionTier.FULL_ENSEMBLE,
                baseline_confidence=baseline,
                reasoning="Low baseline confidence requires maximum accuracy methods",
                expected_improvement=0.2,
                cost_justification="High cost justified by significant accuracy gain",
            )

        logger.info(
            "accuracy_need_assessed",
            page_number=page_number,
            baseline_confidence=baseline,
            recommended_tier=assessment.recommended_tier.value,
        )
        return assessment

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def _prepare(
        self,
        image: Path,
        page_number: int,
        discipline: str | None,
    ) -> _PageContext:
        if not image.exists():
            raise InferenceValidationError(f"Image file not found: {image}")

        digest = None
        if self._cache is not None:
            digest = await asyncio.to_thread(image_digest, image)
        prepared = await self._preprocess(image)
        grid_info = await self._analyze_grid(image)
        return _PageContext(
            image=prepared,
            page_number=page_number,
            discipline=discipline,
            grid_info=grid_info,
            digest=digest,
        )

    async def _preprocess(self, image: Path) -> Path:
        if self._preprocessor is None:
            return image
        try:
            return Path(
                await self._preprocessor.preprocess(image, self._preprocessing_options)
            )
        except Exception as e:
            logger.warning(
                "preprocessing_failed",
                image=str(image),
                error=str(e),
                error_type=type(e).__name__,
            )
            return image

    async def _analyze_grid(self, image: Path) -> GridInfo | None:
        if self._grid_analyzer is None:
            return None
        try:
            return await self._grid_analyzer.count_grids(image)
        except Exception as e:
            logger.warning(
                "grid_analysis_failed",
                image=str(image),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    async def _run_single(self, context: _PageContext) -> _TierRun:
        async def compute() -> _TierOutput:
            result = await self._single_pass.extract(
                context.image,
                context.page_number,
                discipline=context.discipline,
                grid_info=context.grid_info,
            )
            return result.record, result.confidence, {"model": result.model}

        return await self._run_tier(
            ExtractionTier.SINGLE, context, compute, self._single_configuration()
        )

    async def _run_multi_pass(self, context: _PageContext) -> _TierRun:
        async def compute() -> _TierOutput:
            result = await self._multi_pass.extract_with_consensus(
                context.image,
                context.page_number,
                discipline=context.discipline,
                grid_info=context.grid_info,
            )
            return (
                result.consensus,
                result.confidence,
                {
                    "agreement_score": result.agreement_score,
                    "failed_passes": result.failed_passes,
                },
            )

        configuration = {**self._single_configuration(), "passes": self._multi_pass.pass_count}
        return await self._run_tier(ExtractionTier.MULTI_PASS, context, compute, configuration)

    async def _run_multi_model(
        self,
        context: _PageContext,
        ready: list[EnsembleModel],
    ) -> _TierRun:
        async def compute() -> _TierOutput:
            result = await self._multi_model.analyze_with_multiple_models(
                context.image,
                context.page_number,
                discipline=context.discipline,
                grid_info=context.grid_info,
                models=ready,
            )
            return (
                result.consensus,
                result.confidence,
                {
                    "answered_models": result.answered_models,
                    **result.performance.to_dict(),
                },
            )

        configuration = {"models": [model.model_dump() for model in ready]}
        return await self._run_tier(ExtractionTier.MULTI_MODEL, context, compute, configuration)

    async def _run_full_ensemble(
        self,
        context: _PageContext,
        multi_pass: _TierRun,
        multi_model: _TierRun,
        ready: list[EnsembleModel],
    ) -> _TierRun:
        async def compute() -> _TierOutput:
            combined = self._combiner.combine(
                MultiPassResult(
                    consensus=multi_pass.record,
                    confidence=multi_pass.confidence,
                    agreement_score=float(multi_pass.details.get("agreement_score", 0.0)),
                ),
                MultiModelResult(
                    consensus=multi_model.record,
                    confidence=multi_model.confidence,
                ),
            )
            return (
                combined.record,
                combined.confidence,
                {"wholesale_source": combined.wholesale_source},
            )

        configuration = {
            **self._single_configuration(),
            "passes": self._multi_pass.pass_count,
            "models": [model.model_dump() for model in ready],
            "votes": [
                self._combiner.multi_pass_weight,
                self._combiner.multi_model_weight,
                self._combiner.vote_threshold,
            ],
        }
        return await self._run_tier(ExtractionTier.FULL_ENSEMBLE, context, compute, configuration)

    async def _run_tier(
        self,
        tier: ExtractionTier,
        context: _PageContext,
        compute: Callable[[], Awaitable[_TierOutput]],
        configuration: dict[str, Any],
    ) -> _TierRun:
        """
        Run one tier behind the cache.

        Inference failures become a zero-confidence empty record. Zero
        confidence results are not cached, and cancellation propagates
        before anything is written.
        """
        method = method_identifier(tier.value, context.discipline, PROMPT_VERSION, configuration)
        start_time = time.perf_counter()

        cached = await self._lookup(context, method)
        if cached is not None:
            record, confidence, details = cached
            self._metrics.record_tier_run(tier.value, TierOutcome.CACHE_HIT)
            return _TierRun(
                tier=tier,
                record=record,
                confidence=confidence,
                elapsed_ms=int((time.perf_counter() - start_time) * 1000),
                cached=True,
                details=details,
            )

        with self._metrics.track_tier(tier.value):
            try:
                record, confidence, details = await compute()
            except InferenceError as e:
                logger.warning(
                    "extraction_tier_failed",
                    tier=tier.value,
                    page_number=context.page_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._metrics.record_inference_failure(tier.value, type(e).__name__)
                record = ExtractionRecord.empty(context.page_number)
                if context.grid_info is not None:
                    record.grid_info = context.grid_info
                confidence, details = 0.0, {}

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        self._metrics.record_tier_run(
            tier.value, TierOutcome.SUCCESS if confidence > 0 else TierOutcome.FAILURE
        )
        logger.info(
            "extraction_tier_complete",
            tier=tier.value,
            page_number=context.page_number,
            confidence=confidence,
            processing_time_ms=elapsed_ms,
        )

        if confidence > 0 and self._cache is not None and context.digest is not None:
            await asyncio.to_thread(
                self._cache.store,
                context.digest,
                method,
                record.to_dict(),
                confidence,
                processing_time_ms=elapsed_ms,
                metrics=details,
            )

        return _TierRun(
            tier=tier,
            record=record,
            confidence=confidence,
            elapsed_ms=elapsed_ms,
            details=details,
        )

    async def _lookup(self, context: _PageContext, method: str) -> _TierOutput | None:
        if self._cache is None or context.digest is None:
            return None

        entry = await asyncio.to_thread(self._cache.lookup, context.digest, method)
        if entry is None:
            self._metrics.record_cache_lookup(False)
            return None

        try:
            record = ExtractionRecord.from_dict(entry.record, page_number=context.page_number)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(
                "cache_record_unusable",
                image_digest=context.digest,
                method=method,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._metrics.record_cache_lookup(False)
            return None

        self._metrics.record_cache_lookup(True)
        return record, entry.confidence, dict(entry.metrics)

    def _single_configuration(self) -> dict[str, Any]:
        """Model setup a single pass depends on, folded into cache keys."""
        return {
            "model": self._single_pass.model,
            "temperature": self._single_pass.temperature,
        }

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    def _finish(
        self,
        runs: list[_TierRun],
        start_time: float,
        target: float,
    ) -> EscalationResult:
        final = runs[-1]
        baseline = runs[0]
        cumulative_ms = sum(run.elapsed_ms for run in runs)
        speed_penalty = (
            round(cumulative_ms / baseline.elapsed_ms, 4) if baseline.elapsed_ms > 0 else 1.0
        )
        profile = TIER_PROFILES[final.tier]

        breakdown = PerformanceBreakdown(
            tier_times_ms={run.tier.value: run.elapsed_ms for run in runs},
            speed_penalty=speed_penalty,
            accuracy_gain=round(final.confidence - baseline.confidence, 6),
            processing_cost=profile.processing_cost,
            resource_note=profile.resource_note,
            recommended_uses=profile.recommended_uses,
        )
        result = EscalationResult(
            record=final.record,
            confidence=final.confidence,
            estimated_accuracy=estimate_accuracy(final.confidence, final.tier),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
            tier=final.tier,
            breakdown=breakdown,
            cache_hits=tuple(run.tier.value for run in runs if run.cached),
        )

        self._metrics.record_escalation(final.tier.value, final.confidence)
        if self._tracker is not None:
            self._tracker.record(
                PageMetrics.from_counts(
                    final.record.counts(),
                    tier=final.tier.value,
                    confidence=result.confidence,
                    estimated_accuracy=result.estimated_accuracy,
                    processing_time_ms=result.processing_time_ms,
                    speed_penalty=speed_penalty,
                    processing_cost=profile.processing_cost,
                )
            )

        logger.info(
            "escalation_complete",
            page_number=final.record.page_number,
            tier=final.tier.value,
            confidence=result.confidence,
            target_confidence=target,
            met_target=result.confidence >= target,
            estimated_accuracy=result.estimated_accuracy,
            speed_penalty=speed_penalty,
            cache_hits=list(result.cache_hits),
            processing_time_ms=result.processing_time_ms,
        )
        return result
