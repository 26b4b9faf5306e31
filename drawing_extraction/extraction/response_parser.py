"""
Tolerant parser for vision model output.

Models wrap JSON in markdown fences, double up quotes, embed raw control
characters and run out of tokens half-way through an array. The parser
works through an ordered list of strategies and keeps whatever complete
data it can recover. It never raises: total failure yields an empty
record.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from json_repair import repair_json

from drawing_extraction.config import get_logger
from drawing_extraction.extraction.models import OCR_CORRECTED_FIELDS, ExtractionRecord
from drawing_extraction.extraction.ocr import fix_ocr_nested


logger = get_logger(__name__)

ParseStrategy = Callable[[str, str], dict[str, Any] | None]

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_OPEN_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*")
_DANGLING_QUOTES_PATTERN = re.compile(r'([^\s:,\[{\\])""(\s*[}\]])')
_ESCAPED_INCH_PATTERN = re.compile(r'(\d)\\"')
_ADJACENT_OBJECTS_PATTERN = re.compile(r"}\s*{")
_WHITESPACE_CONTROL_PATTERN = re.compile(r"[\t\n\r]")
_OTHER_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(slots=True)
class ParseOutcome:
    """
    Result of parsing one model response.

    Attributes:
        record: Parsed record (empty on total failure).
        strategy: Name of the strategy that produced the payload, or
            ``"none"`` when nothing could be recovered.
    """

    record: ExtractionRecord
    strategy: str

    @property
    def recovered(self) -> bool:
        """True when any strategy produced a payload."""
        return self.strategy != "none"


def extract_json_candidate(text: str) -> str:
    """
    Cut the JSON object out of a model response.

    Strips a markdown fence when present, then keeps everything from the
    first ``{`` to the last ``}``. When the closing brace is missing the
    tail is kept so truncated arrays can still be salvaged.
    """
    candidate = text.strip()

    if "```" in candidate:
        match = _FENCE_PATTERN.search(candidate)
        if match and "{" in match.group(1):
            candidate = match.group(1)
        else:
            candidate = _OPEN_FENCE_PATTERN.sub("", candidate)

    first = candidate.find("{")
    if first == -1:
        return candidate
    last = candidate.rfind("}")
    if last < first:
        return candidate[first:]
    return candidate[first : last + 1]


def repair_json_text(text: str) -> str:
    """Apply the textual repairs for known model output defects."""
    while '"""' in text:
        text = text.replace('"""', '"')
    text = _ESCAPED_INCH_PATTERN.sub(r"\1in", text)
    text = _DANGLING_QUOTES_PATTERN.sub(r'\1"\2', text)
    text = _WHITESPACE_CONTROL_PATTERN.sub(" ", text)
    text = _OTHER_CONTROL_PATTERN.sub("", text)
    text = _ADJACENT_OBJECTS_PATTERN.sub("}, {", text)
    return text


def _scan(text: str, start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for structural characters outside strings."""
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                yield index, char
            continue
        if char == '"':
            in_string = True
        yield index, char


def is_balanced(text: str) -> bool:
    """True when every bracket outside string literals is closed in order."""
    stack: list[str] = []
    pairs = {"}": "{", "]": "["}
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]":
            if not stack or stack.pop() != pairs[char]:
                return False
    return not stack and not in_string


def _object_end(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at ``start``."""
    depth = 0
    for index, char in _scan(text, start):
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return index if char == "}" else None
            if depth < 0:
                return None
    return None


def _load_object(fragment: str) -> dict[str, Any] | None:
    try:
        value = json.loads(fragment)
    except json.JSONDecodeError:
        value = repair_json(fragment, return_objects=True)
    return value if isinstance(value, dict) else None


def _top_level_arrays(text: str) -> Iterator[tuple[str, int]]:
    """Yield ``(field_name, index)`` for each ``"field": [`` of the root object."""
    depth = 0
    key_start: int | None = None
    last_string: str | None = None
    pending_key: str | None = None
    for index, char in _scan(text):
        if char == '"':
            if key_start is None:
                key_start = index
            else:
                last_string = text[key_start + 1 : index]
                key_start = None
            continue
        if char.isspace():
            continue
        if char == ":" and depth == 1 and last_string is not None:
            pending_key = last_string
        elif char == "[" and depth == 1 and pending_key is not None:
            yield pending_key, index + 1
            pending_key = None
        elif char != ":":
            pending_key = None
        if char != ":":
            last_string = None
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1


def _complete_objects_in_array(text: str, start: int) -> list[dict[str, Any]]:
    """Complete objects of the array starting at ``start``, up to truncation."""
    objects: list[dict[str, Any]] = []
    depth = 0
    object_start: int | None = None
    for index, char in _scan(text, start):
        if char == "{":
            if depth == 0:
                object_start = index
            depth += 1
        elif char == "[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth < 0:
                break
            if depth == 0 and char == "}" and object_start is not None:
                parsed = _load_object(text[object_start : index + 1])
                if parsed is not None:
                    objects.append(parsed)
                object_start = None
    return objects


def _marked_objects(text: str) -> list[dict[str, Any]]:
    """Every complete object carrying a ``mark`` key, outermost first."""
    objects: list[dict[str, Any]] = []
    index = text.find("{")
    while index != -1:
        end = _object_end(text, index)
        parsed = _load_object(text[index : end + 1]) if end is not None else None
        if parsed is not None and "mark" in parsed:
            objects.append(parsed)
            index = text.find("{", end + 1)
        else:
            index = text.find("{", index + 1)
    return objects


def strict_strategy(candidate: str, repaired: str) -> dict[str, Any] | None:
    """Standard JSON, first as returned and then after textual repairs."""
    for text in (candidate, repaired):
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def lenient_strategy(candidate: str, repaired: str) -> dict[str, Any] | None:
    """
    JSON with trailing commas, single quotes and similar slips.

    Only balanced text is accepted; completing a truncated document
    would invent structure, which is the salvage strategy's job to avoid.
    """
    if not is_balanced(repaired):
        return None
    value = repair_json(repaired, return_objects=True)
    if isinstance(value, dict) and value:
        return value
    return None


def salvage_strategy(candidate: str, repaired: str) -> dict[str, Any] | None:
    """
    Recover complete objects from a damaged or truncated document.

    Objects are bucketed under the top-level array they appear in. When
    no array context survives, any complete object with a ``mark`` is
    treated as a beam.
    """
    payload: dict[str, Any] = {}
    for field_name, start in _top_level_arrays(repaired):
        objects = _complete_objects_in_array(repaired, start)
        if objects:
            payload.setdefault(field_name, []).extend(objects)

    if not payload:
        marked = _marked_objects(repaired)
        if marked:
            payload["beams"] = marked

    return payload or None


DEFAULT_STRATEGIES: tuple[tuple[str, ParseStrategy], ...] = (
    ("strict", strict_strategy),
    ("lenient", lenient_strategy),
    ("salvage", salvage_strategy),
)


class ResponseParser:
    """
    Turns raw model text into an ``ExtractionRecord``.

    Example:
        parser = ResponseParser()
        record = parser.parse(response.content, page_number=3)
    """

    def __init__(
        self,
        strategies: tuple[tuple[str, ParseStrategy], ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self._strategies = strategies

    def parse(self, text: str, page_number: int = 0) -> ExtractionRecord:
        """Parse model output; never raises."""
        return self.parse_with_outcome(text, page_number).record

    def parse_with_outcome(self, text: str, page_number: int = 0) -> ParseOutcome:
        """Parse model output and report which strategy succeeded."""
        if not text or not text.strip():
            logger.warning("empty_model_response", page_number=page_number)
            return ParseOutcome(ExtractionRecord.empty(page_number), "none")

        candidate = extract_json_candidate(text)
        repaired = repair_json_text(candidate)

        for name, strategy in self._strategies:
            try:
                payload = strategy(candidate, repaired)
            except Exception as e:
                logger.warning("parse_strategy_error", strategy=name, error=str(e))
                continue
            if payload is None:
                continue

            try:
                record = self._build_record(payload, page_number)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(
                    "parse_payload_unusable",
                    strategy=name,
                    page_number=page_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            log = logger.debug if name == "strict" else logger.info
            log(
                "model_response_parsed",
                strategy=name,
                page_number=page_number,
                beams=len(record.beams or []),
                schedules=len(record.schedules),
            )
            return ParseOutcome(record, name)

        logger.warning(
            "model_response_unparseable",
            page_number=page_number,
            content_length=len(text),
            content_preview=text[:200],
        )
        return ParseOutcome(ExtractionRecord.empty(page_number), "none")

    @staticmethod
    def _build_record(payload: dict[str, Any], page_number: int) -> ExtractionRecord:
        corrected = dict(payload)
        for field_name in OCR_CORRECTED_FIELDS:
            if field_name in corrected:
                corrected[field_name] = fix_ocr_nested(corrected[field_name])
        return ExtractionRecord.from_dict(corrected, page_number=page_number)


_default_parser = ResponseParser()


def parse_response(text: str, page_number: int = 0) -> ExtractionRecord:
    """Parse model output with the default strategy list."""
    return _default_parser.parse(text, page_number)
