"""
Unit tests for multi-model consensus and the model registry.

Tests cover:
- Model availability (listing, ``:latest`` tags, listing failures)
- Per-model confidence with model bonus
- Weighted mark voting and best-model selection
- Overall confidence and performance summary
"""

import asyncio
import json

import pytest

from drawing_extraction.client.inference_client import (
    InferenceConnectionError,
    InferenceTimeoutError,
)
from drawing_extraction.client.model_registry import ModelRegistry
from drawing_extraction.config import EnsembleModel
from drawing_extraction.extraction.models import ExtractionRecord
from drawing_extraction.extraction.multi_model import ModelRun, MultiModelAnalyzer
from drawing_extraction.extraction.single_pass import SinglePassExtractor


GLM = EnsembleModel(name="glm-ocr", weight=1.0, temperature=0.3)
LLAMA = EnsembleModel(
    name="llama3.2-vision:11b", weight=1.5, temperature=0.2, confidence_bonus=0.1
)
QWEN = EnsembleModel(name="qwen2-vl:7b", weight=1.2, temperature=0.25, confidence_bonus=0.05)
MODELS = [GLM, LLAMA, QWEN]


def _by_model(answers: dict):
    """Responder answering per requested model; exceptions are raised."""

    def responder(request):
        answer = answers[request.model]
        if isinstance(answer, Exception):
            raise answer
        return answer

    return responder


def _analyzer(client, models=MODELS) -> MultiModelAnalyzer:
    return MultiModelAnalyzer(SinglePassExtractor(client), ModelRegistry(client, models))


# ---------------------------------------------------------------------------
# TestModelRegistry
# ---------------------------------------------------------------------------


class TestModelRegistry:

    def test_defaults_from_settings(self, scripted_client) -> None:
        registry = ModelRegistry(scripted_client(lambda r: "{}"))
        assert [m.name for m in registry.models] == [
            "glm-ocr",
            "llama3.2-vision:11b",
            "qwen2-vl:7b",
        ]
        assert registry.get("qwen2-vl:7b").confidence_bonus == pytest.approx(0.05)
        assert registry.get("missing") is None

    def test_intersects_with_listed_models(self, scripted_client) -> None:
        client = scripted_client(lambda r: "{}", models=["glm-ocr:latest", "qwen2-vl:7b", "other"])
        ready = asyncio.run(ModelRegistry(client, MODELS).ensure_models_available())
        assert ready == [GLM, QWEN]

    def test_listing_failure_means_nothing_available(self, scripted_client) -> None:
        client = scripted_client(lambda r: "{}")
        client.list_models.side_effect = InferenceConnectionError("refused")
        assert asyncio.run(ModelRegistry(client, MODELS).ensure_models_available()) == []


# ---------------------------------------------------------------------------
# TestMultiModelAnalyzer
# ---------------------------------------------------------------------------


class TestMultiModelAnalyzer:

    def test_weighted_vote(self, scripted_client, page_image) -> None:
        client = scripted_client(
            _by_model(
                {
                    "glm-ocr": json.dumps({"beams": [{"mark": "A"}, {"mark": "B"}]}),
                    "llama3.2-vision:11b": json.dumps({"beams": [{"mark": "A"}]}),
                    "qwen2-vl:7b": json.dumps({"beams": [{"mark": "A"}, {"mark": "C"}]}),
                }
            )
        )

        result = asyncio.run(
            _analyzer(client).analyze_with_multiple_models(page_image, 5, models=MODELS)
        )

        runs = result.model_results
        assert runs["glm-ocr"].confidence == pytest.approx(0.6)
        assert runs["llama3.2-vision:11b"].confidence == pytest.approx(0.7)
        assert runs["qwen2-vl:7b"].confidence == pytest.approx(0.65)
        # B: 0.6 x 1.0 < 1.0; C: 0.65 x 1.2 = 0.78 < 1.0
        assert result.consensus.marks("beams") == ["A"]
        assert result.consensus.page_number == 5
        assert result.answered_models == ["glm-ocr", "llama3.2-vision:11b", "qwen2-vl:7b"]

    def test_temperature_per_model(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda r: "{}")
        asyncio.run(_analyzer(client).analyze_with_multiple_models(page_image, 1, models=MODELS))

        temperatures = {
            call.args[0].model: call.args[0].temperature
            for call in client.generate.call_args_list
        }
        assert temperatures == {
            "glm-ocr": pytest.approx(0.3),
            "llama3.2-vision:11b": pytest.approx(0.2),
            "qwen2-vl:7b": pytest.approx(0.25),
        }

    def test_overall_confidence(self, scripted_client, page_image) -> None:
        client = scripted_client(
            _by_model(
                {
                    "glm-ocr": json.dumps({"beams": [{"mark": "A"}]}),
                    "llama3.2-vision:11b": json.dumps({"beams": [{"mark": "A"}]}),
                    "qwen2-vl:7b": InferenceTimeoutError("timed out"),
                }
            )
        )

        result = asyncio.run(
            _analyzer(client).analyze_with_multiple_models(page_image, 1, models=MODELS)
        )

        failed = result.model_results["qwen2-vl:7b"]
        assert not failed.succeeded
        assert failed.confidence == 0.0
        assert failed.record.is_empty
        # (0.6 x 1.0 + 0.7 x 1.5 + 0 x 1.2) / 3.7 + 0.1
        assert result.confidence == pytest.approx(1.65 / 3.7 + 0.1, abs=1e-6)
        assert result.performance.most_confident == "llama3.2-vision:11b"

    def test_no_model_answered(self, scripted_client, page_image) -> None:
        def responder(request):
            raise InferenceConnectionError("refused")

        client = scripted_client(responder)
        result = asyncio.run(
            _analyzer(client).analyze_with_multiple_models(page_image, 1, models=[GLM, QWEN])
        )

        assert result.confidence == 0.0
        assert result.consensus.is_empty
        assert result.answered_models == []
        assert result.performance.most_confident == ""

    def test_checks_availability_when_models_omitted(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda r: "{}", models=["glm-ocr"])
        result = asyncio.run(_analyzer(client).analyze_with_multiple_models(page_image, 1))

        assert list(result.model_results) == ["glm-ocr"]
        # a single answering model gets no agreement bonus
        assert result.confidence == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# TestBuildConsensus
# ---------------------------------------------------------------------------


class TestBuildConsensus:

    def test_wholesale_fields_from_best_weighted_model(self, scripted_client) -> None:
        analyzer = _analyzer(scripted_client(lambda r: "{}"))
        runs = [
            ModelRun(GLM, ExtractionRecord(dimensions=[{"value": "glm"}]), confidence=0.9),
            ModelRun(LLAMA, ExtractionRecord(dimensions=[{"value": "llama"}]), confidence=0.7),
        ]
        # 0.9 x 1.0 < 0.7 x 1.5
        consensus = analyzer.build_consensus(runs, page_number=1)
        assert consensus.dimensions == [{"value": "llama"}]

    def test_tie_goes_to_earlier_model(self, scripted_client) -> None:
        analyzer = _analyzer(scripted_client(lambda r: "{}"))
        heavy = EnsembleModel(name="heavy", weight=2.0)
        runs = [
            ModelRun(heavy, ExtractionRecord(dimensions=[{"value": "first"}]), confidence=0.5),
            ModelRun(GLM, ExtractionRecord(dimensions=[{"value": "second"}]), confidence=1.0),
        ]
        consensus = analyzer.build_consensus(runs, page_number=1)
        assert consensus.dimensions == [{"value": "first"}]

    def test_weighted_confidence(self) -> None:
        run = ModelRun(LLAMA, ExtractionRecord(), confidence=0.8)
        assert run.weighted_confidence == pytest.approx(1.2)
