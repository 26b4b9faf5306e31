"""
Interfaces of the optional upstream services used before extraction.

Image enhancement and grid-line counting live outside this package. The
escalation controller only needs these narrow async interfaces and
degrades gracefully when either is missing or fails.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from drawing_extraction.extraction.models import GridInfo


@dataclass(frozen=True, slots=True)
class PreprocessingOptions:
    """
    Image enhancement knobs passed through to the preprocessor.

    Attributes:
        normalize: Stretch the histogram.
        sharpen: Apply an unsharp mask.
        upscale: Integer upscale factor.
        contrast: Contrast multiplier.
        brightness: Brightness multiplier.
    """

    normalize: bool = True
    sharpen: bool = True
    upscale: int = 2
    contrast: float = 1.2
    brightness: float = 1.0


@runtime_checkable
class ImagePreprocessor(Protocol):
    """Produces an enhanced copy of a drawing image."""

    async def preprocess(self, image_path: Path, options: PreprocessingOptions) -> Path:
        """Return the path of the enhanced image."""
        ...


@runtime_checkable
class GridAnalyzer(Protocol):
    """Counts grid lines and bays on a drawing."""

    async def count_grids(self, image_path: Path) -> GridInfo:
        """Return grid labels and bay count for the drawing."""
        ...
