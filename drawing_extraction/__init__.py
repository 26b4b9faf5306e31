"""
Ensemble vision extraction and quantity cross-validation for
construction drawings.

Reads beam, joist and column callouts, schedules and dimensions from
drawing images with local vision models, escalating from one pass to a
full ensemble only when confidence demands it, and checks schedule
quantities against calculated quantities.

Usage:
    from drawing_extraction import EscalationController, InferenceClient
    from drawing_extraction import QuantityCrossChecker
"""

from importlib.metadata import PackageNotFoundError, version

from drawing_extraction.client import InferenceClient, InferenceError, ModelRegistry
from drawing_extraction.config import configure_logging, get_logger, get_settings
from drawing_extraction.extraction import (
    EscalationController,
    EscalationResult,
    ExtractionRecord,
    ExtractionTier,
    ResponseParser,
)
from drawing_extraction.monitoring import ExtractionMetrics, PerformanceTracker
from drawing_extraction.storage import ResultCache
from drawing_extraction.validation import (
    CalculatedQuantity,
    QuantityCrossChecker,
    QuantityDiscrepancy,
)


try:
    __version__ = version("drawing-extraction")
except PackageNotFoundError:
    __version__ = "1.0.0"


__all__ = [
    "__version__",
    "get_settings",
    "get_logger",
    "configure_logging",
    "InferenceClient",
    "InferenceError",
    "ModelRegistry",
    "EscalationController",
    "EscalationResult",
    "ExtractionRecord",
    "ExtractionTier",
    "ResponseParser",
    "ExtractionMetrics",
    "PerformanceTracker",
    "ResultCache",
    "CalculatedQuantity",
    "QuantityCrossChecker",
    "QuantityDiscrepancy",
]
