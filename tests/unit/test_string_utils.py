"""
Unit tests for string utilities.

Tests cover:
- Whitespace normalization
- Item key normalization for marks and sizes
- Positive integer parsing of schedule cells
"""

import pytest

from drawing_extraction.utils.string_utils import (
    normalize_item_key,
    normalize_whitespace,
    parse_positive_int,
)


class TestNormalizeWhitespace:
    """Tests for normalize_whitespace."""

    def test_collapses_runs(self) -> None:
        assert normalize_whitespace("W18x106   @ \n 16 OC") == "W18x106 @ 16 OC"

    def test_empty(self) -> None:
        assert normalize_whitespace("") == ""


class TestNormalizeItemKey:
    """Tests for normalize_item_key."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("w18 x 106", "W18X106"),
            ("W18X106", "W18X106"),
            ("W18-X106", "W18X106"),
            ("HSS6x6x1/4", "HSS6X6X14"),
            ("b_1", "B1"),
            (12, "12"),
            (None, ""),
            (" - ", ""),
        ],
    )
    def test_keys(self, value, expected) -> None:
        assert normalize_item_key(value) == expected


class TestParsePositiveInt:
    """Tests for parse_positive_int."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (4, 4),
            (0, None),
            (-3, None),
            (2.0, 2),
            (float("nan"), None),
            ("12", 12),
            ("4 EA", 4),
            (" 7", 7),
            ("EA 4", None),
            ("-2", None),
            (True, None),
            (None, None),
            ([3], None),
        ],
    )
    def test_values(self, value, expected) -> None:
        assert parse_positive_int(value) == expected
