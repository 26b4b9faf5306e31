"""
Multi-pass consensus: the same model reads the same page several times.

Passes run concurrently under a semaphore. Beams and joists survive only
when a strict majority of the configured passes report them; everything
else is taken from the first pass that succeeded.
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from drawing_extraction.client.inference_client import InferenceError
from drawing_extraction.config import get_logger, get_settings
from drawing_extraction.extraction.confidence import agreement_confidence, agreement_score
from drawing_extraction.extraction.models import VOTED_FIELDS, ExtractionRecord, GridInfo
from drawing_extraction.extraction.single_pass import SinglePassExtractor, SinglePassResult
from drawing_extraction.extraction.voting import entries_with_votes


logger = get_logger(__name__)


@dataclass(slots=True)
class MultiPassResult:
    """
    Consensus of several passes of one model.

    Attributes:
        consensus: Merged record.
        confidence: 0.6 + 0.35 x agreement, capped; 0.0 when every pass failed.
        agreement_score: Fraction of agreeing pass pairs.
        individual_results: Per-pass results, ``None`` for failed passes.
        failed_passes: Number of passes that raised.
        processing_time_ms: Wall-clock time of the whole tier.
    """

    consensus: ExtractionRecord
    confidence: float
    agreement_score: float
    individual_results: list[SinglePassResult | None] = field(default_factory=list)
    failed_passes: int = 0
    processing_time_ms: int = 0

    @property
    def successful_results(self) -> list[SinglePassResult]:
        """Results of the passes that returned."""
        return [r for r in self.individual_results if r is not None]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "consensus": self.consensus.to_dict(),
            "confidence": self.confidence,
            "agreement_score": self.agreement_score,
            "individual_results": [
                r.to_dict() if r is not None else None for r in self.individual_results
            ],
            "failed_passes": self.failed_passes,
            "processing_time_ms": self.processing_time_ms,
        }


def merge_passes(
    records: list[ExtractionRecord],
    pass_count: int,
    page_number: int,
) -> ExtractionRecord:
    """
    Merge pass records into one consensus record.

    Failed passes are simply absent from ``records`` but still count in
    ``pass_count``, so they act as votes against every mark.
    """
    if not records:
        return ExtractionRecord.empty(page_number)

    consensus = copy.deepcopy(records[0])
    consensus.page_number = page_number
    for field_name in VOTED_FIELDS:
        kept, _ = entries_with_votes(
            ((record.members(field_name), 1.0) for record in records),
            threshold=pass_count // 2 + 1,
        )
        setattr(consensus, field_name, kept)
    return consensus


class MultiPassExtractor:
    """
    Repeats single-pass extraction and keeps what the passes agree on.

    Example:
        extractor = MultiPassExtractor(SinglePassExtractor(client))
        result = await extractor.extract_with_consensus(path, 3, "structural")
    """

    def __init__(
        self,
        single_pass: SinglePassExtractor,
        pass_count: int | None = None,
        parallelism: int | None = None,
        confidence_ceiling: float | None = None,
    ) -> None:
        settings = get_settings()

        self._single_pass = single_pass
        self._pass_count = pass_count or settings.ensemble.multi_pass_count
        self._parallelism = parallelism or settings.ensemble.parallelism
        self._ceiling = (
            settings.ensemble.ensemble_ceiling
            if confidence_ceiling is None
            else confidence_ceiling
        )

    @property
    def pass_count(self) -> int:
        """Number of passes per extraction."""
        return self._pass_count

    async def extract_with_consensus(
        self,
        image: Path,
        page_number: int,
        discipline: str | None = None,
        grid_info: GridInfo | None = None,
    ) -> MultiPassResult:
        """
        Run the configured number of passes and build their consensus.

        A failed or timed-out pass contributes zero votes. Cancellation
        propagates to the caller.
        """
        start_time = time.perf_counter()
        semaphore = asyncio.Semaphore(self._parallelism)

        async def run_pass(index: int) -> SinglePassResult | None:
            async with semaphore:
                try:
                    return await self._single_pass.extract(
                        image, page_number, discipline=discipline, grid_info=grid_info
                    )
                except InferenceError as e:
                    logger.warning(
                        "extraction_pass_failed",
                        page_number=page_number,
                        pass_index=index,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return None

        results = list(
            await asyncio.gather(*(run_pass(i) for i in range(self._pass_count)))
        )
        successful = [r.record for r in results if r is not None]
        failed = len(results) - len(successful)

        consensus = merge_passes(successful, self._pass_count, page_number)
        if successful:
            agreement = agreement_score(successful)
            confidence = agreement_confidence(agreement, ceiling=self._ceiling)
        else:
            agreement = 0.0
            confidence = 0.0
            if grid_info is not None:
                consensus.grid_info = grid_info

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "multi_pass_complete",
            page_number=page_number,
            passes=self._pass_count,
            failed_passes=failed,
            agreement_score=round(agreement, 4),
            confidence=confidence,
            processing_time_ms=elapsed_ms,
        )

        return MultiPassResult(
            consensus=consensus,
            confidence=confidence,
            agreement_score=agreement,
            individual_results=results,
            failed_passes=failed,
            processing_time_ms=elapsed_ms,
        )
