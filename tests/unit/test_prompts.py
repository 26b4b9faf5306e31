"""
Tests for drawing_extraction/extraction/prompts.py: extraction prompt selection.
"""

import pytest

from drawing_extraction.extraction.models import GridInfo
from drawing_extraction.extraction.prompts import (
    GENERAL_PROMPT,
    PROMPT_VERSION,
    STRUCTURAL_PROMPT,
    build_extraction_prompt,
    build_grid_context,
    is_structural,
)


class TestPromptSelection:

    @pytest.mark.parametrize("discipline", ["structural", "Structural", " STRUCTURAL "])
    def test_structural_is_case_insensitive(self, discipline: str) -> None:
        assert is_structural(discipline)
        assert build_extraction_prompt(discipline) == STRUCTURAL_PROMPT

    @pytest.mark.parametrize("discipline", [None, "", "architectural", "mechanical"])
    def test_other_disciplines_use_general_prompt(self, discipline) -> None:
        assert build_extraction_prompt(discipline) == GENERAL_PROMPT

    def test_prompt_version_is_positive(self) -> None:
        assert PROMPT_VERSION >= 1


class TestGridContext:

    def test_grid_context_prepended(self) -> None:
        grid = GridInfo.from_labels(["A", "B", "C"], ["1", "2"], ["24'-0\""])
        prompt = build_extraction_prompt("structural", grid)

        assert prompt.startswith("GRID CONTEXT: this drawing has 2 bays.")
        assert "Lettered grid lines: A, B, C." in prompt
        assert "Numbered grid lines: 1, 2." in prompt
        assert "Grid spacing: 24'-0\"." in prompt
        assert prompt.endswith(STRUCTURAL_PROMPT)

    def test_empty_grid_adds_nothing(self) -> None:
        assert build_grid_context(GridInfo()) == ""
        assert build_extraction_prompt(None, GridInfo()) == GENERAL_PROMPT
