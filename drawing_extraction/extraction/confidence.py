"""
Confidence heuristics for extraction results.

Confidence here is not calibrated probability. It is a population-density
score: the more callout categories a record fills, the more the model is
assumed to have actually read the sheet. Every base value, increment and
ceiling is a tuning parameter sourced from settings.
"""

from itertools import combinations

from drawing_extraction.extraction.models import (
    VOTED_FIELDS,
    ExtractionRecord,
    ExtractionTier,
)
from drawing_extraction.utils import normalize_item_key


SINGLE_PASS_INCREMENTS: tuple[tuple[str, float], ...] = (
    ("beams", 0.1),
    ("joists", 0.1),
    ("schedules", 0.1),
    ("dimensions", 0.05),
)

MODEL_BASE_CONFIDENCE = 0.5
MODEL_CATEGORY_INCREMENT = 0.1
MODEL_CATEGORIES: tuple[str, ...] = ("beams", "joists", "schedules", "dimensions")

AGREEMENT_BASE_CONFIDENCE = 0.6
AGREEMENT_CONFIDENCE_SPAN = 0.35

ACCURACY_MULTIPLIERS: dict[ExtractionTier, float] = {
    ExtractionTier.SINGLE: 0.9,
    ExtractionTier.MULTI_PASS: 0.95,
    ExtractionTier.MULTI_MODEL: 0.95,
    ExtractionTier.FULL_ENSEMBLE: 0.98,
}


def _is_populated(record: ExtractionRecord, category: str) -> bool:
    if category == "schedules":
        return bool(record.schedules)
    if category == "dimensions":
        return bool(record.dimensions)
    return bool(record.members(category))


def single_pass_confidence(
    record: ExtractionRecord,
    base: float = 0.6,
    ceiling: float = 0.85,
) -> float:
    """
    Confidence of one single-pass extraction.

    Base 0.6, plus 0.1 each for beams, joists and schedules and 0.05 for
    dimensions, capped at the single-pass ceiling.
    """
    confidence = base
    for category, increment in SINGLE_PASS_INCREMENTS:
        if _is_populated(record, category):
            confidence += increment
    return round(min(ceiling, confidence), 6)


def model_confidence(
    record: ExtractionRecord,
    bonus: float = 0.0,
    ceiling: float = 0.95,
) -> float:
    """Confidence of one model's answer in multi-model consensus."""
    confidence = MODEL_BASE_CONFIDENCE
    for category in MODEL_CATEGORIES:
        if _is_populated(record, category):
            confidence += MODEL_CATEGORY_INCREMENT
    return round(min(ceiling, confidence + bonus), 6)


def mark_signature(record: ExtractionRecord, field_name: str) -> list[str]:
    """Sorted normalised marks of one voted collection."""
    return sorted(
        key
        for key in (normalize_item_key(mark) for mark in record.marks(field_name))
        if key
    )


def agreement_score(records: list[ExtractionRecord]) -> float:
    """
    Fraction of pass pairs whose beam and joist mark lists match exactly.

    Each voted collection contributes one comparison per pair of records.
    Fewer than two records means there is nothing to agree on: 0.0.
    """
    agreements = 0
    total = 0
    for field_name in VOTED_FIELDS:
        signatures = [mark_signature(record, field_name) for record in records]
        for left, right in combinations(signatures, 2):
            total += 1
            if left == right:
                agreements += 1
    return agreements / total if total else 0.0


def agreement_confidence(agreement: float, ceiling: float = 0.95) -> float:
    """Multi-pass confidence: 0.6 + 0.35 x agreement, capped."""
    return round(
        min(ceiling, AGREEMENT_BASE_CONFIDENCE + AGREEMENT_CONFIDENCE_SPAN * agreement),
        6,
    )


def estimate_accuracy(
    confidence: float,
    tier: ExtractionTier,
    ceiling: float = 0.95,
) -> float:
    """Conservative accuracy estimate: confidence x tier multiplier, capped."""
    return round(min(ceiling, confidence * ACCURACY_MULTIPLIERS[tier]), 6)
