"""
Cross-validation of schedule quantities against calculated quantities.

Schedules printed on a drawing state how many of each member the designer
expects; calculators derive the same quantities from the geometry. This
module joins both sides on a normalized item key and reports every item
whose counts differ by more than the minor threshold.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from drawing_extraction.config import get_logger, get_settings
from drawing_extraction.extraction.models import ExtractionRecord
from drawing_extraction.utils import normalize_item_key, parse_positive_int

if TYPE_CHECKING:
    from drawing_extraction.monitoring.metrics import ExtractionMetrics


logger = get_logger(__name__)

MISSING_FROM_CALCULATION = "missing_from_calculation"
UNKNOWN_ITEM = "unknown"
QUANTITY_KEYS: tuple[str, ...] = ("quantity", "qty", "count", "no", "pieces")


class Severity(str, Enum):
    """How far a calculated quantity strays from the schedule."""

    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


@dataclass(frozen=True, slots=True)
class CalculatedQuantity:
    """
    A quantity produced by a calculator.

    Attributes:
        item: Mark or size the quantity refers to.
        calculated_qty: Calculated number of pieces.
        unit: Unit of the quantity (``"EA"``, ``"LF"``).
        source: Calculator or drawing region that produced it.
    """

    item: str
    calculated_qty: float
    unit: str = "EA"
    source: str = "calculation"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CalculatedQuantity:
        """Build from a calculator payload using snake or camel case keys."""
        qty = data.get("calculated_qty", data.get("calculatedQty", 0))
        return cls(
            item=str(data.get("item") or UNKNOWN_ITEM),
            calculated_qty=float(qty or 0),
            unit=str(data.get("unit") or "EA"),
            source=str(data.get("source") or "calculation"),
        )


@dataclass(frozen=True, slots=True)
class QuantityDiscrepancy:
    """
    One item whose schedule and calculated quantities disagree.

    Attributes:
        item: Normalized item key.
        schedule_qty: Total quantity stated by the schedules.
        calculated_qty: Total calculated quantity.
        difference: ``calculated_qty - schedule_qty``.
        percent_difference: ``|difference| / schedule_qty x 100``.
        severity: Severity class.
        source: Source of the calculated quantity, or
            ``missing_from_calculation``.
    """

    item: str
    schedule_qty: float
    calculated_qty: float
    difference: float
    percent_difference: float
    severity: Severity
    source: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "item": self.item,
            "scheduleQty": self.schedule_qty,
            "calculatedQty": self.calculated_qty,
            "difference": self.difference,
            "percentDifference": self.percent_difference,
            "severity": self.severity.value,
            "source": self.source,
        }


def schedule_row_key(row: Mapping[str, Any]) -> str:
    """Join key of a schedule row: its mark, else its size, else ``unknown``."""
    return normalize_item_key(row.get("mark") or row.get("size") or UNKNOWN_ITEM)


def schedule_row_quantity(row: Mapping[str, Any]) -> int:
    """First positive integer among the usual quantity columns, else 1."""
    for key in QUANTITY_KEYS:
        qty = parse_positive_int(row.get(key))
        if qty is not None:
            return qty
    return 1


def _format_qty(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


class QuantityCrossChecker:
    """
    Compares schedule quantities with calculated quantities.

    Example:
        checker = QuantityCrossChecker()
        discrepancies = checker.compare_quantities(record.schedule_rows(), calculated)
        print(checker.generate_report(discrepancies))
    """

    def __init__(
        self,
        minor_threshold: float | None = None,
        moderate_threshold: float | None = None,
        metrics: ExtractionMetrics | None = None,
    ) -> None:
        """
        Initialize the checker.

        Args:
            minor_threshold: Differences at or below this percent are ignored.
            moderate_threshold: Differences above this percent are major.
            metrics: Optional metrics sink for discrepancy counts.
        """
        settings = get_settings().cross_check

        self.minor_threshold = (
            settings.minor_threshold if minor_threshold is None else minor_threshold
        )
        self.moderate_threshold = (
            settings.moderate_threshold if moderate_threshold is None else moderate_threshold
        )
        self._metrics = metrics

    def classify(self, percent_difference: float) -> Severity:
        """Severity of a percent difference."""
        if percent_difference <= self.minor_threshold:
            return Severity.MINOR
        if percent_difference <= self.moderate_threshold:
            return Severity.MODERATE
        return Severity.MAJOR

    def compare_quantities(
        self,
        schedule_rows: Iterable[Mapping[str, Any]],
        calculated: Iterable[CalculatedQuantity | Mapping[str, Any]],
    ) -> list[QuantityDiscrepancy]:
        """
        Join schedule rows and calculated quantities on the normalized key.

        Items present on both sides are reported when they differ by more
        than the minor threshold. Items only in the schedule are always
        major. Items only in the calculation are not reported.

        Args:
            schedule_rows: Schedule rows with a ``mark`` or ``size``.
            calculated: Calculated quantities; mappings are accepted.

        Returns:
            Discrepancies sorted by percent difference, largest first.
        """
        scheduled: dict[str, int] = {}
        for row in schedule_rows:
            key = schedule_row_key(row)
            scheduled[key] = scheduled.get(key, 0) + schedule_row_quantity(row)

        totals: dict[str, float] = {}
        sources: dict[str, str] = {}
        for quantity in calculated:
            if not isinstance(quantity, CalculatedQuantity):
                quantity = CalculatedQuantity.from_dict(quantity)
            key = normalize_item_key(quantity.item or UNKNOWN_ITEM)
            totals[key] = totals.get(key, 0.0) + quantity.calculated_qty
            sources.setdefault(key, quantity.source)

        discrepancies: list[QuantityDiscrepancy] = []
        for key, schedule_qty in scheduled.items():
            if key not in totals:
                discrepancies.append(
                    QuantityDiscrepancy(
                        item=key,
                        schedule_qty=schedule_qty,
                        calculated_qty=0,
                        difference=-schedule_qty,
                        percent_difference=100.0,
                        severity=Severity.MAJOR,
                        source=MISSING_FROM_CALCULATION,
                    )
                )
                continue

            calculated_qty = totals[key]
            difference = calculated_qty - schedule_qty
            percent = abs(difference) / schedule_qty * 100
            if percent <= self.minor_threshold:
                continue
            discrepancies.append(
                QuantityDiscrepancy(
                    item=key,
                    schedule_qty=schedule_qty,
                    calculated_qty=calculated_qty,
                    difference=difference,
                    percent_difference=round(percent, 6),
                    severity=self.classify(percent),
                    source=sources[key],
                )
            )

        discrepancies.sort(key=lambda d: d.percent_difference, reverse=True)

        if self._metrics is not None:
            self._metrics.record_discrepancies(d.severity.value for d in discrepancies)

        logger.info(
            "quantities_compared",
            scheduled_items=len(scheduled),
            calculated_items=len(totals),
            discrepancies=len(discrepancies),
            major=sum(1 for d in discrepancies if d.severity is Severity.MAJOR),
        )
        return discrepancies

    def cross_check_record(
        self,
        record: ExtractionRecord,
        calculated: Iterable[CalculatedQuantity | Mapping[str, Any]],
    ) -> ExtractionRecord:
        """Copy of ``record`` with discrepancies from all of its schedules attached."""
        checked = copy.deepcopy(record)
        checked.discrepancies = self.compare_quantities(record.schedule_rows(), calculated)
        return checked

    def flag_significant(
        self,
        discrepancies: Iterable[QuantityDiscrepancy],
        threshold: float | None = None,
    ) -> list[QuantityDiscrepancy]:
        """
        Discrepancies that need review.

        Anything above ``threshold`` percent (default: the moderate
        threshold) and every item missing from the calculation.
        """
        limit = self.moderate_threshold if threshold is None else threshold
        return [
            d
            for d in discrepancies
            if d.percent_difference > limit or d.source == MISSING_FROM_CALCULATION
        ]

    def generate_report(self, discrepancies: list[QuantityDiscrepancy]) -> str:
        """Plain-text summary of a comparison."""
        if not discrepancies:
            return (
                "All quantities match within acceptable tolerance "
                f"(+/-{_format_qty(self.minor_threshold)}%)"
            )

        by_severity = {
            severity: [d for d in discrepancies if d.severity is severity]
            for severity in Severity
        }
        minor = _format_qty(self.minor_threshold)
        moderate = _format_qty(self.moderate_threshold)

        lines = [
            "QUANTITY DISCREPANCY REPORT",
            f"Total discrepancies: {len(discrepancies)}",
            (
                f"Major (>{moderate}%): {len(by_severity[Severity.MAJOR])}, "
                f"Moderate ({minor}-{moderate}%): {len(by_severity[Severity.MODERATE])}, "
                f"Minor (<{minor}%): {len(by_severity[Severity.MINOR])}"
            ),
        ]
        for severity, title in (
            (Severity.MAJOR, "MAJOR DISCREPANCIES"),
            (Severity.MODERATE, "MODERATE DISCREPANCIES"),
        ):
            entries = by_severity[severity]
            if not entries:
                continue
            lines.append("")
            lines.append(f"{title}:")
            for d in entries:
                line = (
                    f"  {d.item}: Schedule={_format_qty(d.schedule_qty)}, "
                    f"Calculated={_format_qty(d.calculated_qty)} "
                    f"({d.percent_difference:.1f}% diff)"
                )
                if d.source == MISSING_FROM_CALCULATION:
                    line += " [missing from calculation]"
                lines.append(line)
        return "\n".join(lines)
