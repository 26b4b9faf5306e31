"""
Extraction module for the drawing extraction engine.

Provides the extraction data model, the tolerant response parser, the
single-pass, multi-pass and multi-model extractors, the weighted
consensus combiner and the confidence-gated escalation controller.
"""

from drawing_extraction.extraction.collaborators import (
    GridAnalyzer,
    ImagePreprocessor,
    PreprocessingOptions,
)
from drawing_extraction.extraction.confidence import (
    agreement_confidence,
    agreement_score,
    estimate_accuracy,
    model_confidence,
    single_pass_confidence,
)
from drawing_extraction.extraction.consensus import CombinedResult, WeightedConsensusCombiner
from drawing_extraction.extraction.escalation import (
    TIER_PROFILES,
    AccuracyAssessment,
    EscalationController,
    EscalationResult,
    PerformanceBreakdown,
    TierProfile,
)
from drawing_extraction.extraction.models import (
    ExtractionRecord,
    ExtractionTier,
    GridInfo,
    ScheduleBlock,
)
from drawing_extraction.extraction.multi_model import (
    ModelPerformance,
    ModelRun,
    MultiModelAnalyzer,
    MultiModelResult,
)
from drawing_extraction.extraction.multi_pass import (
    MultiPassExtractor,
    MultiPassResult,
    merge_passes,
)
from drawing_extraction.extraction.ocr import fix_ocr_errors
from drawing_extraction.extraction.prompts import PROMPT_VERSION, build_extraction_prompt
from drawing_extraction.extraction.response_parser import (
    ParseOutcome,
    ResponseParser,
    parse_response,
)
from drawing_extraction.extraction.single_pass import SinglePassExtractor, SinglePassResult


__all__ = [
    # Data model
    "ExtractionRecord",
    "ExtractionTier",
    "GridInfo",
    "ScheduleBlock",
    # Parsing
    "ParseOutcome",
    "ResponseParser",
    "parse_response",
    "fix_ocr_errors",
    "PROMPT_VERSION",
    "build_extraction_prompt",
    # Confidence
    "single_pass_confidence",
    "model_confidence",
    "agreement_score",
    "agreement_confidence",
    "estimate_accuracy",
    # Tiers
    "SinglePassExtractor",
    "SinglePassResult",
    "MultiPassExtractor",
    "MultiPassResult",
    "merge_passes",
    "MultiModelAnalyzer",
    "MultiModelResult",
    "ModelRun",
    "ModelPerformance",
    "WeightedConsensusCombiner",
    "CombinedResult",
    # Escalation
    "EscalationController",
    "EscalationResult",
    "PerformanceBreakdown",
    "AccuracyAssessment",
    "TierProfile",
    "TIER_PROFILES",
    # Collaborators
    "GridAnalyzer",
    "ImagePreprocessor",
    "PreprocessingOptions",
]
