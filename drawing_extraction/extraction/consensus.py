"""
Weighted consensus combiner for the full-ensemble tier.

Merges a multi-pass result and a multi-model result. Beam and joist marks
are kept by weighted vote:

    multi-pass entry   -> agreement_score x 1.2
    multi-model entry  -> confidence x 1.0
    kept when the accumulated vote >= 1.0

So one fully confident source suffices, while low-confidence support from
a single source does not. All other fields are taken wholesale from the
source with the higher standalone confidence.
"""

import copy
from dataclasses import dataclass, field
from typing import Any

from drawing_extraction.config import get_logger, get_settings
from drawing_extraction.extraction.models import VOTED_FIELDS, ExtractionRecord
from drawing_extraction.extraction.multi_model import MultiModelResult
from drawing_extraction.extraction.multi_pass import MultiPassResult
from drawing_extraction.extraction.voting import entries_with_votes


logger = get_logger(__name__)

MULTI_PASS_SOURCE = "multi-pass"
MULTI_MODEL_SOURCE = "multi-model"


@dataclass(slots=True)
class CombinedResult:
    """
    Outcome of combining both consensus sources.

    Attributes:
        record: Merged record.
        confidence: Mean of the source confidences plus the ensemble bonus.
        votes: Accumulated vote per normalised mark, per voted field.
        wholesale_source: Source the non-voted fields were taken from.
    """

    record: ExtractionRecord
    confidence: float
    votes: dict[str, dict[str, float]] = field(default_factory=dict)
    wholesale_source: str = MULTI_PASS_SOURCE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record": self.record.to_dict(),
            "confidence": self.confidence,
            "votes": self.votes,
            "wholesale_source": self.wholesale_source,
        }


class WeightedConsensusCombiner:
    """
    Combines multi-pass and multi-model consensus into one record.

    Example:
        combiner = WeightedConsensusCombiner()
        combined = combiner.combine(multi_pass_result, multi_model_result)
    """

    def __init__(
        self,
        multi_pass_weight: float | None = None,
        multi_model_weight: float | None = None,
        vote_threshold: float | None = None,
        ensemble_bonus: float | None = None,
        confidence_ceiling: float | None = None,
    ) -> None:
        settings = get_settings().ensemble

        self.multi_pass_weight = (
            settings.multi_pass_vote_weight if multi_pass_weight is None else multi_pass_weight
        )
        self.multi_model_weight = (
            settings.multi_model_vote_weight if multi_model_weight is None else multi_model_weight
        )
        self.vote_threshold = (
            settings.vote_threshold if vote_threshold is None else vote_threshold
        )
        self.ensemble_bonus = (
            settings.ensemble_bonus if ensemble_bonus is None else ensemble_bonus
        )
        self.confidence_ceiling = (
            settings.ensemble_ceiling if confidence_ceiling is None else confidence_ceiling
        )

    def combine(
        self,
        multi_pass: MultiPassResult,
        multi_model: MultiModelResult,
    ) -> CombinedResult:
        """
        Merge both sources.

        Args:
            multi_pass: Multi-pass consensus with its agreement score.
            multi_model: Multi-model consensus with its confidence.

        Returns:
            CombinedResult with the merged record and combined confidence.
        """
        if multi_model.confidence > multi_pass.confidence:
            wholesale_source = MULTI_MODEL_SOURCE
            base = multi_model.consensus
        else:
            wholesale_source = MULTI_PASS_SOURCE
            base = multi_pass.consensus

        record = copy.deepcopy(base)
        pass_vote = multi_pass.agreement_score * self.multi_pass_weight
        model_vote = multi_model.confidence * self.multi_model_weight

        votes: dict[str, dict[str, float]] = {}
        for field_name in VOTED_FIELDS:
            kept, field_votes = entries_with_votes(
                (
                    (multi_pass.consensus.members(field_name), pass_vote),
                    (multi_model.consensus.members(field_name), model_vote),
                ),
                threshold=self.vote_threshold,
            )
            setattr(record, field_name, kept)
            votes[field_name] = field_votes

        confidence = self.combined_confidence(multi_pass.confidence, multi_model.confidence)

        logger.info(
            "ensemble_combined",
            page_number=record.page_number,
            wholesale_source=wholesale_source,
            beams=len(record.beams or []),
            joists=len(record.joists or []),
            confidence=confidence,
        )

        return CombinedResult(
            record=record,
            confidence=confidence,
            votes=votes,
            wholesale_source=wholesale_source,
        )

    def combined_confidence(
        self, multi_pass_confidence: float, multi_model_confidence: float
    ) -> float:
        """Mean of both confidences plus the ensemble bonus; 0.0 when both failed."""
        if multi_pass_confidence <= 0 and multi_model_confidence <= 0:
            return 0.0
        mean = (multi_pass_confidence + multi_model_confidence) / 2
        return round(min(self.confidence_ceiling, mean + self.ensemble_bonus), 6)
