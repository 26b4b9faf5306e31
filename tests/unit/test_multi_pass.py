"""
Unit tests for multi-pass consensus.

Tests cover:
- Strict-majority voting across passes
- Agreement score and confidence
- Failed passes counted as votes against
- Bounded concurrency
"""

import asyncio
import json

import pytest

from drawing_extraction.client.inference_client import InferenceConnectionError
from drawing_extraction.extraction.models import ExtractionRecord, ScheduleBlock
from drawing_extraction.extraction.multi_pass import MultiPassExtractor, merge_passes
from drawing_extraction.extraction.single_pass import SinglePassExtractor


def _answer(beams: list[str], joists: list[str] | None = None) -> str:
    payload = {"beams": [{"mark": m} for m in beams]}
    if joists is not None:
        payload["joists"] = [{"mark": m} for m in joists]
    return json.dumps(payload)


def _sequence(*answers):
    """Responder returning the answers in call order; exceptions are raised."""
    remaining = list(answers)

    def responder(request):
        answer = remaining.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    return responder


# ---------------------------------------------------------------------------
# TestMergePasses
# ---------------------------------------------------------------------------


class TestMergePasses:

    def test_majority_of_three(self) -> None:
        records = [
            ExtractionRecord(beams=[{"mark": "A"}, {"mark": "B"}]),
            ExtractionRecord(beams=[{"mark": "A"}]),
            ExtractionRecord(beams=[{"mark": "A"}, {"mark": "C"}]),
        ]
        consensus = merge_passes(records, pass_count=3, page_number=1)
        assert consensus.marks("beams") == ["A"]

    def test_failed_passes_count_against(self) -> None:
        records = [
            ExtractionRecord(beams=[{"mark": "A"}]),
            ExtractionRecord(beams=[{"mark": "A"}]),
        ]
        # 2 of 4 is not a strict majority
        assert merge_passes(records, pass_count=4, page_number=1).marks("beams") == []
        assert merge_passes(records, pass_count=3, page_number=1).marks("beams") == ["A"]

    def test_other_fields_from_first_pass(self) -> None:
        first = ExtractionRecord(
            schedules=[ScheduleBlock("beam", [{"mark": "A", "qty": 2}])],
            dimensions=[{"location": "A-B", "value": "20'"}],
        )
        second = ExtractionRecord(dimensions=[{"location": "B-C", "value": "30'"}])

        consensus = merge_passes([first, second], pass_count=2, page_number=8)

        assert consensus.page_number == 8
        assert consensus.dimensions == [{"location": "A-B", "value": "20'"}]
        assert consensus.schedules == first.schedules
        assert consensus is not first

    def test_no_records(self) -> None:
        assert merge_passes([], pass_count=3, page_number=2).is_empty


# ---------------------------------------------------------------------------
# TestMultiPassExtractor
# ---------------------------------------------------------------------------


class TestMultiPassExtractor:

    def test_unanimous_passes(self, scripted_client, page_image) -> None:
        answer = _answer(["W8x10", "W12x26"], ["2x10"])
        client = scripted_client(lambda request: answer)
        extractor = MultiPassExtractor(SinglePassExtractor(client), pass_count=3)

        result = asyncio.run(extractor.extract_with_consensus(page_image, 2, "structural"))

        assert client.generate.await_count == 3
        assert result.agreement_score == pytest.approx(1.0)
        assert result.confidence == pytest.approx(0.95)
        assert result.consensus.marks("beams") == ["W8x10", "W12x26"]
        assert result.failed_passes == 0
        assert len(result.successful_results) == 3

    def test_disagreeing_passes(self, scripted_client, page_image) -> None:
        client = scripted_client(
            _sequence(
                _answer(["A", "B"], ["J1"]),
                _answer(["A"], ["J1"]),
                _answer(["A", "C"], ["J1"]),
            )
        )
        extractor = MultiPassExtractor(SinglePassExtractor(client), pass_count=3)

        result = asyncio.run(extractor.extract_with_consensus(page_image, 2))

        assert result.consensus.marks("beams") == ["A"]
        assert result.consensus.marks("joists") == ["J1"]
        # beams: 0 of 3 pairs agree; joists: 3 of 3
        assert result.agreement_score == pytest.approx(0.5)
        assert result.confidence == pytest.approx(0.775)

    def test_failed_pass_contributes_no_votes(self, scripted_client, page_image) -> None:
        client = scripted_client(
            _sequence(
                _answer(["A", "B"]),
                InferenceConnectionError("refused"),
                _answer(["A"]),
            )
        )
        extractor = MultiPassExtractor(SinglePassExtractor(client), pass_count=3)

        result = asyncio.run(extractor.extract_with_consensus(page_image, 2))

        assert result.failed_passes == 1
        assert result.individual_results.count(None) == 1
        assert result.consensus.marks("beams") == ["A"]

    def test_all_passes_failed(self, scripted_client, page_image) -> None:
        def responder(request):
            raise InferenceConnectionError("refused")

        client = scripted_client(responder)
        extractor = MultiPassExtractor(SinglePassExtractor(client), pass_count=3)

        result = asyncio.run(extractor.extract_with_consensus(page_image, 4))

        assert result.confidence == 0.0
        assert result.agreement_score == 0.0
        assert result.failed_passes == 3
        assert result.consensus.is_empty
        assert result.consensus.page_number == 4

    def test_parallelism_is_bounded(self, scripted_client, page_image) -> None:
        client = scripted_client(lambda request: "{}")
        active = 0
        peak = 0
        original = client.generate.side_effect

        async def tracked(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await original(request)

        client.generate.side_effect = tracked
        extractor = MultiPassExtractor(
            SinglePassExtractor(client), pass_count=5, parallelism=2
        )

        asyncio.run(extractor.extract_with_consensus(page_image, 1))

        assert client.generate.await_count == 5
        assert peak == 2
