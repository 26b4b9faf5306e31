"""
Validation module for the drawing extraction engine.

Provides schedule quantity cross-checking.
"""

from drawing_extraction.validation.cross_checker import (
    MISSING_FROM_CALCULATION,
    CalculatedQuantity,
    QuantityCrossChecker,
    QuantityDiscrepancy,
    Severity,
    schedule_row_key,
    schedule_row_quantity,
)


__all__ = [
    "MISSING_FROM_CALCULATION",
    "CalculatedQuantity",
    "QuantityCrossChecker",
    "QuantityDiscrepancy",
    "Severity",
    "schedule_row_key",
    "schedule_row_quantity",
]
