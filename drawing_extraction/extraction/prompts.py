"""
Extraction prompts for construction drawings.

Two prompts exist: a structural one for structural sheets and a general
one for everything else. Both list the callout patterns the model should
recognise and end with the JSON template the response parser expects.
"""

from drawing_extraction.extraction.models import GridInfo


# Bumped whenever prompt wording changes so cached results from older
# prompts are not served.
PROMPT_VERSION = 3

STRUCTURAL_DISCIPLINE = "structural"


STRUCTURAL_PROMPT = r"""You are analyzing a STRUCTURAL construction drawing. Extract ALL structural data with EXACT formatting.

CRITICAL PATTERNS TO RECOGNIZE:
1. STEEL BEAMS: W18x106, W10x100, W12x65, W14x90 (always W + depth + x + weight)
2. STEEL COLUMNS: W14x90, HSS6x6x1/4, HSS8x8x1/2 (HSS = hollow structural section)
3. JOISTS: 18K4, 22K9, 14" TJI 560, 11 7/8" TJI 360 (K-series or TJI with depth)
4. LUMBER: 2x10, 2x12, 4x12, 6x6 PT (pressure treated)
5. ENGINEERED: 5 1/8" x 18" GLB, 3 1/2" x 14" LVL, 7" x 18" PSL

SPACING PATTERNS:
- @ 16" OC (on center)
- @ 12" to 16" OC (variable spacing)
- @ 400mm OC (metric)
- @ 16"/19.2" OC (dual spacing)

DIMENSION PATTERNS:
- 24'-6" (feet-inches)
- 18'-0" (feet only)
- 3'-6" (short spans)

ALSO EXTRACT:
- CONNECTIONS: bolted, welded, base plates, clip angles
- SCHEDULE TABLES: beam and column schedules with marks (B1, C1), every row
- FOUNDATION: piers, footings, grade beams with sizes and rebar
- SYMBOLS: weld symbols, section markers, bolt patterns

Return ONLY valid JSON:
{
  "beams": [{"mark": "W18x106", "length": "34'-6\"", "gridLocation": "A-B/1-2", "count": 1, "elevation": ""}],
  "columns": [{"mark": "HSS6x6x1/4", "gridLocation": "at A/1", "height": "", "basePlate": ""}],
  "joists": [{"mark": "14\" TJI 560", "spacing": "@ 16\" OC", "span": "24'-0\"", "count": 0}],
  "connections": [{"type": "bolted", "location": "beam-to-column", "detail": ""}],
  "schedules": [{"type": "beam_schedule", "entries": [{"mark": "B1", "size": "W18x106", "length": "", "qty": 1}]}],
  "dimensions": [{"location": "bay spacing", "value": "24'-6\"", "gridReference": "A to B", "element": "beam span"}],
  "symbols": [{"type": "weld", "location": "", "detail": ""}],
  "foundation": [{"type": "pier", "size": "", "rebar": "", "count": 0}]
}"""


GENERAL_PROMPT = r"""You are analyzing a construction drawing. Extract ALL visible data.

Look for:
- Beam callouts (W18x106, W10x100, 5 1/8" x 18" GLB, 3 1/2" x 14" LVL) with lengths and quantities
- Column callouts (W14x90, HSS8x8x1/2, 6x6 PT)
- Joist callouts (18K4, 14" TJI 560, 2x10) with spacing such as @ 16" OC
- Tables or schedules with marks (D101, W1, F1, B1) - extract ALL rows
- Dimension strings (24'-6", 3'-0", 12") with what they measure
- Grid lines and labels (A, B, C, 1, 2, 3)
- Door/window marks and sizes
- Material callouts and specifications
- Symbols (structural, electrical, plumbing)

Return ONLY valid JSON:
{
  "beams": [{"mark": "W18x106", "length": "34'-6\"", "gridLocation": "A-B/1-2", "count": 1}],
  "columns": [{"mark": "W14x90", "gridLocation": "at A/1"}],
  "joists": [{"mark": "18K4", "spacing": "@ 24\" OC", "span": "", "count": 0}],
  "schedules": [{"type": "beam_schedule", "entries": [{"mark": "B1", "size": "W18x106", "length": "", "qty": 1}]}],
  "dimensions": [{"location": "wall", "value": "24'-6\"", "element": ""}],
  "itemCounts": [{"item": "door", "mark": "D101", "count": 1}],
  "symbols": [{"type": "", "location": "", "detail": ""}]
}"""


def is_structural(discipline: str | None) -> bool:
    """True when the discipline selects the structural prompt."""
    return bool(discipline) and discipline.strip().lower() == STRUCTURAL_DISCIPLINE


def build_grid_context(grid_info: GridInfo) -> str:
    """
    Context line describing the drawing grid.

    Returns an empty string when the grid analysis found no labels.
    """
    if not grid_info.vertical_grids and not grid_info.horizontal_grids:
        return ""

    vertical = ", ".join(grid_info.vertical_grids) or "none"
    horizontal = ", ".join(grid_info.horizontal_grids) or "none"
    line = (
        f"GRID CONTEXT: this drawing has {grid_info.bay_count} bays. "
        f"Lettered grid lines: {vertical}. Numbered grid lines: {horizontal}."
    )
    if grid_info.grid_spacing:
        line += f" Grid spacing: {', '.join(grid_info.grid_spacing)}."
    return line + " Use these labels for gridLocation and gridReference values."


def build_extraction_prompt(
    discipline: str | None = None,
    grid_info: GridInfo | None = None,
) -> str:
    """
    Build the single-pass extraction prompt.

    Args:
        discipline: Drawing discipline; ``structural`` (any case) selects
            the structural prompt.
        grid_info: Grid metadata to mention, if available.

    Returns:
        Prompt text for the vision model.
    """
    prompt = STRUCTURAL_PROMPT if is_structural(discipline) else GENERAL_PROMPT
    if grid_info is not None:
        context = build_grid_context(grid_info)
        if context:
            prompt = f"{context}\n\n{prompt}"
    return prompt
