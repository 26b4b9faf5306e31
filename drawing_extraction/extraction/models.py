"""
Data model for extracted drawing content.

An ``ExtractionRecord`` is the unit of extracted knowledge for one drawing
page. Member collections (beams, columns, joists, ...) are kept as loosely
typed dictionaries keyed by engineering mark so that fields the model
returns beyond the documented ones survive parsing and re-serialisation.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypedDict


class BeamEntry(TypedDict, total=False):
    """Beam callout, e.g. ``{"mark": "W18x106", "length": "34'-6\\""}``."""

    mark: str
    length: str
    gridLocation: str
    count: int
    elevation: str


class ColumnEntry(TypedDict, total=False):
    """Column callout."""

    mark: str
    gridLocation: str
    height: str
    basePlate: str


class JoistEntry(TypedDict, total=False):
    """Joist callout with spacing notation."""

    mark: str
    spacing: str
    span: str
    count: int


class ConnectionEntry(TypedDict, total=False):
    """Connection callout (bolted, welded, base plate ...)."""

    type: str
    location: str
    detail: str


class FoundationEntry(TypedDict, total=False):
    """Foundation element (pier, footing, grade beam)."""

    type: str
    size: str
    rebar: str
    count: int


class SymbolEntry(TypedDict, total=False):
    """Drawing symbol (weld, section marker ...)."""

    type: str
    location: str
    detail: str


class DimensionEntry(TypedDict, total=False):
    """Dimension string and what it measures."""

    location: str
    value: str
    gridReference: str
    element: str


class ItemCount(TypedDict, total=False):
    """Count of a marked item on the sheet."""

    item: str
    mark: str
    count: int


# Member collections in serialisation order. Beams and joists are voted on by
# the consensus stages; the others follow the best source wholesale.
MEMBER_FIELDS: tuple[str, ...] = (
    "beams",
    "columns",
    "joists",
    "connections",
    "foundation",
    "symbols",
)

VOTED_FIELDS: tuple[str, ...] = ("beams", "joists")

# Fields whose nested strings go through OCR correction after parsing.
OCR_CORRECTED_FIELDS: tuple[str, ...] = (
    "beams",
    "columns",
    "joists",
    "schedules",
    "dimensions",
)

KNOWN_FIELDS: frozenset[str] = frozenset(
    (*MEMBER_FIELDS, "schedules", "dimensions", "itemCounts", "gridInfo", "discrepancies")
)

_GRID_FIELDS = frozenset(("verticalGrids", "horizontalGrids", "bayCount", "gridSpacing"))


def _as_int(value: Any, default: int) -> int:
    """Integer form of a model-supplied value, ``default`` when it has none."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _as_labels(value: Any) -> list[str]:
    """String labels from a model-supplied list; anything else is empty."""
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


@dataclass(slots=True)
class ScheduleBlock:
    """
    One schedule table found on a drawing.

    Attributes:
        schedule_type: Schedule kind, e.g. ``"beam_schedule"``.
        entries: Table rows as free-form key/value mappings.
        page_number: Page the schedule was read from.
        type_key: Field name the kind was given under (``type`` or the
            ``scheduleType`` alias), reused when serialising.
        extra: Other schedule fields (title, headers, notes ...).
    """

    schedule_type: str = "unknown"
    entries: list[dict[str, Any]] = field(default_factory=list)
    page_number: int = 0
    type_key: str = "type"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the model's JSON vocabulary."""
        data: dict[str, Any] = {
            self.type_key: self.schedule_type,
            "entries": copy.deepcopy(self.entries),
        }
        for key, value in self.extra.items():
            data[key] = copy.deepcopy(value)
        data["pageNumber"] = self.page_number
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], page_number: int = 0) -> ScheduleBlock:
        """Build from a parsed schedule object, ignoring malformed rows."""
        entries = data.get("entries")
        if not isinstance(entries, list):
            entries = []
        type_key = "scheduleType" if "type" not in data and "scheduleType" in data else "type"
        return cls(
            schedule_type=str(data.get(type_key) or "unknown"),
            entries=[dict(e) for e in entries if isinstance(e, dict)],
            page_number=_as_int(data.get("pageNumber"), page_number) or page_number,
            type_key=type_key,
            extra={
                key: copy.deepcopy(value)
                for key, value in data.items()
                if key not in ("entries", "pageNumber", type_key)
            },
        )


@dataclass(slots=True)
class GridInfo:
    """
    Grid metadata for a drawing, supplied by the grid-analysis service.

    Attributes:
        vertical_grids: Letter labels (A, B, C ...).
        horizontal_grids: Number labels (1, 2, 3 ...).
        bay_count: Number of bays between grid lines.
        grid_spacing: Dimensions between grid lines, when visible.
        extra: Other grid fields the source supplied.
    """

    vertical_grids: list[str] = field(default_factory=list)
    horizontal_grids: list[str] = field(default_factory=list)
    bay_count: int = 0
    grid_spacing: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_labels(
        cls,
        vertical_grids: list[str],
        horizontal_grids: list[str],
        grid_spacing: list[str] | None = None,
    ) -> GridInfo:
        """Build grid info, deriving the bay count from the longer label run."""
        longest = max(len(vertical_grids), len(horizontal_grids))
        return cls(
            vertical_grids=list(vertical_grids),
            horizontal_grids=list(horizontal_grids),
            bay_count=max(0, longest - 1),
            grid_spacing=list(grid_spacing or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        data: dict[str, Any] = {
            "verticalGrids": list(self.vertical_grids),
            "horizontalGrids": list(self.horizontal_grids),
            "bayCount": self.bay_count,
            "gridSpacing": list(self.grid_spacing),
        }
        for key, value in self.extra.items():
            data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GridInfo:
        """Build from ``to_dict`` output or a model's ``gridInfo`` object."""
        return cls(
            vertical_grids=_as_labels(data.get("verticalGrids")),
            horizontal_grids=_as_labels(data.get("horizontalGrids")),
            bay_count=max(0, _as_int(data.get("bayCount"), 0)),
            grid_spacing=_as_labels(data.get("gridSpacing")),
            extra={
                key: copy.deepcopy(value)
                for key, value in data.items()
                if key not in _GRID_FIELDS
            },
        )


@dataclass(slots=True)
class ExtractionRecord:
    """
    Everything extracted from one drawing page.

    Member collections are ``None`` when the model did not return the
    field at all and an empty list when it returned an empty array.

    Attributes:
        page_number: Source page number.
        schedules: Schedule tables in the order they were returned.
        beams: Beam callouts.
        columns: Column callouts.
        joists: Joist callouts.
        connections: Connection callouts.
        foundation: Foundation elements.
        symbols: Drawing symbols.
        dimensions: Dimension strings.
        item_counts: Counted items by mark.
        grid_info: Grid metadata, when a grid analysis was available.
        discrepancies: Quantity discrepancies attached by cross-checking.
        extra: Well-formed top-level fields with no dedicated slot.
    """

    page_number: int = 0
    schedules: list[ScheduleBlock] = field(default_factory=list)
    beams: list[BeamEntry] | None = None
    columns: list[ColumnEntry] | None = None
    joists: list[JoistEntry] | None = None
    connections: list[ConnectionEntry] | None = None
    foundation: list[FoundationEntry] | None = None
    symbols: list[SymbolEntry] | None = None
    dimensions: list[DimensionEntry] = field(default_factory=list)
    item_counts: list[ItemCount] = field(default_factory=list)
    grid_info: GridInfo | None = None
    discrepancies: list[Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, page_number: int = 0) -> ExtractionRecord:
        """Record with every collection empty."""
        return cls(page_number=page_number)

    @property
    def is_empty(self) -> bool:
        """True when nothing at all was extracted."""
        if self.schedules or self.dimensions or self.item_counts or self.extra:
            return False
        return not any(self.members(name) for name in MEMBER_FIELDS)

    def members(self, field_name: str) -> list[dict[str, Any]]:
        """Member collection by its JSON field name; empty list when absent."""
        if field_name not in MEMBER_FIELDS:
            raise KeyError(f"Unknown member field: {field_name}")
        return list(getattr(self, field_name) or [])

    def marks(self, field_name: str) -> list[str]:
        """Non-empty marks of a member collection, in order."""
        return [
            str(entry.get("mark"))
            for entry in self.members(field_name)
            if entry.get("mark")
        ]

    def schedule_rows(self) -> list[dict[str, Any]]:
        """All schedule rows across every schedule block."""
        return [row for block in self.schedules for row in block.entries]

    def counts(self) -> dict[str, int]:
        """Population counts used by quality indicators."""
        return {
            "beams": len(self.beams or []),
            "columns": len(self.columns or []),
            "joists": len(self.joists or []),
            "schedules": len(self.schedules),
            "dimensions": len(self.dimensions),
            "item_counts": len(self.item_counts),
        }

    def to_dict(self) -> dict[str, Any]:
        """
        Serialise to the model's JSON vocabulary.

        Absent member collections are omitted so a parse/serialise
        round-trip reproduces exactly the fields that were present.
        """
        data: dict[str, Any] = {
            "schedules": [block.to_dict() for block in self.schedules],
        }
        for name in MEMBER_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = copy.deepcopy(value)
        data["dimensions"] = copy.deepcopy(self.dimensions)
        data["itemCounts"] = copy.deepcopy(self.item_counts)
        if self.grid_info is not None:
            data["gridInfo"] = self.grid_info.to_dict()
        if self.discrepancies is not None:
            data["discrepancies"] = [
                d.to_dict() if hasattr(d, "to_dict") else d for d in self.discrepancies
            ]
        for key, value in self.extra.items():
            data[key] = copy.deepcopy(value)
        data["pageNumber"] = self.page_number
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], page_number: int | None = None) -> ExtractionRecord:
        """
        Rebuild a record from ``to_dict`` output or a parsed model payload.

        Discrepancies come back as plain dictionaries; callers that need
        typed discrepancies re-run the cross-check.
        """
        page = page_number if page_number is not None else _as_int(data.get("pageNumber"), 0)
        record = cls(page_number=page)

        schedules = data.get("schedules")
        if isinstance(schedules, list):
            record.schedules = [
                ScheduleBlock.from_dict(s, page) for s in schedules if isinstance(s, dict)
            ]

        for name in MEMBER_FIELDS:
            value = data.get(name)
            if isinstance(value, list):
                setattr(record, name, [dict(e) for e in value if isinstance(e, dict)])

        dimensions = data.get("dimensions")
        if isinstance(dimensions, list):
            record.dimensions = [dict(d) for d in dimensions if isinstance(d, dict)]

        item_counts = data.get("itemCounts")
        if isinstance(item_counts, list):
            record.item_counts = [dict(c) for c in item_counts if isinstance(c, dict)]

        grid = data.get("gridInfo")
        if isinstance(grid, dict):
            record.grid_info = GridInfo.from_dict(grid)

        discrepancies = data.get("discrepancies")
        if isinstance(discrepancies, list):
            record.discrepancies = list(discrepancies)

        record.extra = {
            key: copy.deepcopy(value)
            for key, value in data.items()
            if key not in KNOWN_FIELDS and key != "pageNumber"
        }
        return record


class ExtractionTier(str, Enum):
    """Rungs of the escalation ladder, cheapest first."""

    SINGLE = "single"
    MULTI_PASS = "multi-pass"
    MULTI_MODEL = "multi-model"
    FULL_ENSEMBLE = "full-ensemble"
