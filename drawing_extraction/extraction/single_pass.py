"""
Single-pass extraction: one model, one prompt, one answer.

This is the building block of every tier of the escalation ladder. It
deliberately does not swallow inference failures; the tier that issued
the call decides how a failure is scored.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from drawing_extraction.client.inference_client import InferenceClient, VisionRequest
from drawing_extraction.config import get_logger, get_settings
from drawing_extraction.extraction.confidence import single_pass_confidence
from drawing_extraction.extraction.models import ExtractionRecord, GridInfo
from drawing_extraction.extraction.prompts import build_extraction_prompt
from drawing_extraction.extraction.response_parser import ResponseParser


logger = get_logger(__name__)


@dataclass(slots=True)
class SinglePassResult:
    """
    Outcome of one extraction call.

    Attributes:
        record: Parsed extraction.
        confidence: Population-density confidence of the record.
        model: Model that answered.
        parse_strategy: Parser strategy that recovered the payload.
        processing_time_ms: Wall-clock time of the call.
    """

    record: ExtractionRecord
    confidence: float
    model: str
    parse_strategy: str = "strict"
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record": self.record.to_dict(),
            "confidence": self.confidence,
            "model": self.model,
            "parse_strategy": self.parse_strategy,
            "processing_time_ms": self.processing_time_ms,
        }


class SinglePassExtractor:
    """
    Runs one vision call and scores the parsed record.

    Example:
        extractor = SinglePassExtractor(client)
        result = await extractor.extract(Path("page-3.png"), 3, discipline="Structural")
    """

    def __init__(
        self,
        client: InferenceClient,
        model: str | None = None,
        temperature: float | None = None,
        parser: ResponseParser | None = None,
        base_confidence: float | None = None,
        confidence_ceiling: float | None = None,
    ) -> None:
        settings = get_settings()

        self._client = client
        self._model = model or settings.inference.model
        self._temperature = (
            settings.inference.temperature if temperature is None else temperature
        )
        self._parser = parser or ResponseParser()
        self._base_confidence = (
            settings.ensemble.single_pass_base if base_confidence is None else base_confidence
        )
        self._ceiling = (
            settings.ensemble.single_pass_ceiling
            if confidence_ceiling is None
            else confidence_ceiling
        )

    @property
    def model(self) -> str:
        """Default model for this extractor."""
        return self._model

    @property
    def temperature(self) -> float:
        """Default sampling temperature."""
        return self._temperature

    async def extract(
        self,
        image: Path,
        page_number: int,
        discipline: str | None = None,
        grid_info: GridInfo | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> SinglePassResult:
        """
        Extract one drawing page.

        Args:
            image: Path to the page image.
            page_number: Page number recorded on the result.
            discipline: Drawing discipline, selects the prompt.
            grid_info: Grid metadata for the prompt and the record.
            model: Model override (multi-model tier).
            temperature: Temperature override (multi-model tier).

        Returns:
            SinglePassResult with record and confidence.

        Raises:
            InferenceError: If the inference call fails.
        """
        model_name = model or self._model
        start_time = time.perf_counter()

        request = VisionRequest.from_file(
            Path(image),
            prompt=build_extraction_prompt(discipline, grid_info),
            model=model_name,
            temperature=self._temperature if temperature is None else temperature,
            max_tokens=self._client.max_tokens,
        )
        response = await self._client.generate(request)

        outcome = self._parser.parse_with_outcome(response.content, page_number)
        record = outcome.record
        if grid_info is not None:
            record.grid_info = grid_info

        confidence = single_pass_confidence(
            record, base=self._base_confidence, ceiling=self._ceiling
        )
        elapsed_ms = int((time.perf_counter() - start_time) * 1000)

        logger.info(
            "single_pass_complete",
            page_number=page_number,
            model=model_name,
            confidence=confidence,
            parse_strategy=outcome.strategy,
            processing_time_ms=elapsed_ms,
            **record.counts(),
        )

        return SinglePassResult(
            record=record,
            confidence=confidence,
            model=model_name,
            parse_strategy=outcome.strategy,
            processing_time_ms=elapsed_ms,
        )
