"""
Unit tests for the schedule quantity cross-checker.

Tests cover:
- Key normalisation and quantity extraction from schedule rows
- Severity classification and the minor-threshold cutoff
- Items missing from the calculation
- Record cross-checking, flagging and report rendering
"""

import pytest

from drawing_extraction.extraction.models import ExtractionRecord, ScheduleBlock
from drawing_extraction.monitoring.metrics import ExtractionMetrics
from drawing_extraction.validation.cross_checker import (
    MISSING_FROM_CALCULATION,
    CalculatedQuantity,
    QuantityCrossChecker,
    Severity,
    schedule_row_key,
    schedule_row_quantity,
)


def _calc(item: str, qty: float, source: str = "framing_calculator") -> CalculatedQuantity:
    return CalculatedQuantity(item=item, calculated_qty=qty, source=source)


# ---------------------------------------------------------------------------
# Schedule row helpers
# ---------------------------------------------------------------------------


class TestScheduleRows:

    @pytest.mark.parametrize(
        "row,expected",
        [
            ({"mark": "w18 x 106", "size": "W18x106"}, "W18X106"),
            ({"size": "2x10"}, "2X10"),
            ({"quantity": 3}, "UNKNOWN"),
        ],
    )
    def test_row_key(self, row, expected) -> None:
        assert schedule_row_key(row) == expected

    @pytest.mark.parametrize(
        "row,expected",
        [
            ({"quantity": 4}, 4),
            ({"qty": "12 EA"}, 12),
            ({"quantity": 0, "count": "3"}, 3),
            ({"no": -2, "pieces": 6}, 6),
            ({"quantity": "n/a"}, 1),
            ({}, 1),
        ],
    )
    def test_row_quantity(self, row, expected) -> None:
        assert schedule_row_quantity(row) == expected


# ---------------------------------------------------------------------------
# TestCompareQuantities
# ---------------------------------------------------------------------------


class TestCompareQuantities:

    def test_matching_quantities(self) -> None:
        checker = QuantityCrossChecker()
        rows = [{"mark": "W8x10", "quantity": 10}]
        assert checker.compare_quantities(rows, [_calc("W8x10", 10)]) == []

    def test_major_discrepancy(self) -> None:
        checker = QuantityCrossChecker()
        result = checker.compare_quantities(
            [{"mark": "W8x10", "quantity": 10}], [_calc("w8 x 10", 13)]
        )

        assert len(result) == 1
        discrepancy = result[0]
        assert discrepancy.item == "W8X10"
        assert discrepancy.schedule_qty == 10
        assert discrepancy.calculated_qty == 13
        assert discrepancy.difference == 3
        assert discrepancy.percent_difference == pytest.approx(30.0)
        assert discrepancy.severity is Severity.MAJOR
        assert discrepancy.source == "framing_calculator"

    def test_moderate_discrepancy(self) -> None:
        result = QuantityCrossChecker().compare_quantities(
            [{"mark": "J1", "qty": 20}], [_calc("J1", 17)]
        )
        assert result[0].severity is Severity.MODERATE
        assert result[0].difference == -3

    def test_small_difference_suppressed(self) -> None:
        result = QuantityCrossChecker().compare_quantities(
            [{"mark": "B1", "quantity": 100}], [_calc("B1", 104)]
        )
        assert result == []

    def test_missing_from_calculation_is_major(self) -> None:
        result = QuantityCrossChecker().compare_quantities([{"mark": "B1", "quantity": 5}], [])

        assert len(result) == 1
        assert result[0].severity is Severity.MAJOR
        assert result[0].calculated_qty == 0
        assert result[0].difference == -5
        assert result[0].percent_difference == 100.0
        assert result[0].source == MISSING_FROM_CALCULATION

    def test_calculation_only_items_ignored(self) -> None:
        result = QuantityCrossChecker().compare_quantities([], [_calc("B9", 4)])
        assert result == []

    def test_duplicates_summed_on_both_sides(self) -> None:
        rows = [{"mark": "B1", "quantity": 2}, {"mark": "b1", "quantity": 3}]
        calculated = [_calc("B1", 1), _calc("B-1", 4)]
        assert QuantityCrossChecker().compare_quantities(rows, calculated) == []

    def test_sorted_by_percent_descending(self) -> None:
        rows = [
            {"mark": "A", "quantity": 10},
            {"mark": "B", "quantity": 10},
            {"mark": "C", "quantity": 10},
        ]
        calculated = [_calc("A", 11.5), _calc("B", 20), _calc("C", 13)]

        result = QuantityCrossChecker().compare_quantities(rows, calculated)

        assert [d.item for d in result] == ["B", "C", "A"]

    def test_mapping_input(self) -> None:
        result = QuantityCrossChecker().compare_quantities(
            [{"mark": "B1", "quantity": 2}],
            [{"item": "B1", "calculatedQty": 4, "source": "takeoff"}],
        )
        assert result[0].source == "takeoff"
        assert result[0].percent_difference == pytest.approx(100.0)

    def test_custom_thresholds(self) -> None:
        checker = QuantityCrossChecker(minor_threshold=1, moderate_threshold=50)
        result = checker.compare_quantities([{"mark": "A", "quantity": 10}], [_calc("A", 13)])
        assert result[0].severity is Severity.MODERATE

    def test_records_metrics(self) -> None:
        metrics = ExtractionMetrics(enabled=True)
        QuantityCrossChecker(metrics=metrics).compare_quantities(
            [{"mark": "A", "quantity": 10}, {"mark": "B"}], [_calc("A", 13)]
        )
        assert metrics.get_sample(
            "extraction_quantity_discrepancies_total", {"severity": "major"}
        ) == 2.0


# ---------------------------------------------------------------------------
# TestRecordAndReport
# ---------------------------------------------------------------------------


class TestRecordAndReport:

    def test_cross_check_record_attaches_discrepancies(self) -> None:
        record = ExtractionRecord(
            page_number=3,
            schedules=[
                ScheduleBlock("beam", [{"mark": "W8x10", "quantity": 4}]),
                ScheduleBlock("joist", [{"mark": "J1", "quantity": 10}]),
            ],
        )

        checked = QuantityCrossChecker().cross_check_record(
            record, [_calc("W8x10", 4), _calc("J1", 15)]
        )

        assert record.discrepancies is None
        assert [d.item for d in checked.discrepancies] == ["J1"]
        assert checked.to_dict()["discrepancies"][0]["severity"] == "major"

    def test_flag_significant(self) -> None:
        checker = QuantityCrossChecker()
        discrepancies = checker.compare_quantities(
            [
                {"mark": "A", "quantity": 10},
                {"mark": "B", "quantity": 10},
                {"mark": "C", "quantity": 1},
            ],
            [_calc("A", 13), _calc("B", 11.5)],
        )

        flagged = checker.flag_significant(discrepancies)
        assert [d.item for d in flagged] == ["C", "A"]
        assert [d.item for d in checker.flag_significant(discrepancies, threshold=10)] == [
            "C",
            "A",
            "B",
        ]

    def test_report_when_everything_matches(self) -> None:
        report = QuantityCrossChecker().generate_report([])
        assert report == "All quantities match within acceptable tolerance (+/-5%)"

    def test_report_sections(self) -> None:
        checker = QuantityCrossChecker()
        discrepancies = checker.compare_quantities(
            [{"mark": "A", "quantity": 10}, {"mark": "B", "quantity": 10}, {"mark": "C"}],
            [_calc("A", 13), _calc("B", 11.5)],
        )

        report = checker.generate_report(discrepancies)

        assert "Total discrepancies: 3" in report
        assert "Major (>20%): 2, Moderate (5-20%): 1, Minor (<5%): 0" in report
        assert "  A: Schedule=10, Calculated=13 (30.0% diff)" in report
        assert "  C: Schedule=1, Calculated=0 (100.0% diff) [missing from calculation]" in report
        assert "  B: Schedule=10, Calculated=11.5 (15.0% diff)" in report
        assert report.index("MAJOR DISCREPANCIES") < report.index("MODERATE DISCREPANCIES")
