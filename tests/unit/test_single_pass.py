"""
Unit tests for the single-pass extractor.

Tests cover:
- Request construction (prompt, model, temperature overrides)
- Parsing and scoring of the answer
- Grid info attachment
- Propagation of inference failures
"""

import asyncio
import json

import pytest

from drawing_extraction.client.inference_client import (
    InferenceTimeoutError,
    InferenceValidationError,
)
from drawing_extraction.extraction.models import GridInfo
from drawing_extraction.extraction.prompts import GENERAL_PROMPT, STRUCTURAL_PROMPT
from drawing_extraction.extraction.single_pass import SinglePassExtractor


class TestSinglePassExtractor:

    def test_extracts_and_scores(self, scripted_client, page_image, full_response_text) -> None:
        client = scripted_client(lambda request: full_response_text)
        extractor = SinglePassExtractor(client)

        result = asyncio.run(extractor.extract(page_image, 3, discipline="Structural"))

        assert result.record.page_number == 3
        assert result.record.marks("beams") == ["W18x106", "W12x26"]
        assert result.confidence == pytest.approx(0.85)
        assert result.model == "glm-ocr"
        assert result.parse_strategy == "strict"

        request = client.generate.call_args.args[0]
        assert request.prompt == STRUCTURAL_PROMPT
        assert request.model == "glm-ocr"
        assert request.temperature == pytest.approx(0.3)
        assert request.image_data.startswith("data:image/png;base64,")

    def test_model_and_temperature_override(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda request: "{}")
        extractor = SinglePassExtractor(client)

        result = asyncio.run(
            extractor.extract(page_image, 1, model="qwen2-vl:7b", temperature=0.25)
        )

        request = client.generate.call_args.args[0]
        assert request.model == "qwen2-vl:7b"
        assert request.temperature == pytest.approx(0.25)
        assert request.prompt == GENERAL_PROMPT
        assert result.model == "qwen2-vl:7b"

    def test_unparseable_answer_scores_base(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda request: "The drawing is too blurry.")
        result = asyncio.run(SinglePassExtractor(client).extract(page_image, 1))

        assert result.record.is_empty
        assert result.parse_strategy == "none"
        assert result.confidence == pytest.approx(0.6)

    def test_grid_info_attached(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda request: json.dumps({"beams": [{"mark": "W8x10"}]}))
        grid = GridInfo.from_labels(["A", "B"], ["1", "2", "3"])

        result = asyncio.run(SinglePassExtractor(client).extract(page_image, 1, grid_info=grid))

        assert result.record.grid_info == grid
        assert client.generate.call_args.args[0].prompt.startswith("GRID CONTEXT")

    def test_inference_failure_propagates(self, scripted_client, page_image) -> None:
        def responder(request):
            raise InferenceTimeoutError("timed out")

        client = scripted_client(responder)
        with pytest.raises(InferenceTimeoutError):
            asyncio.run(SinglePassExtractor(client).extract(page_image, 1))

    def test_missing_image(self, scripted_client, tmp_path) -> None:
        client = scripted_client(lambda request: "{}")
        with pytest.raises(InferenceValidationError):
            asyncio.run(SinglePassExtractor(client).extract(tmp_path / "missing.png", 1))
        client.generate.assert_not_called()
