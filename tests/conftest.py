"""
Pytest configuration and shared fixtures.

Provides settings isolation, sample model responses, page images and a
scripted inference client for the extraction tiers.
"""

import json
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add repository root to Python path
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_FORMAT", "console")

from drawing_extraction.client.inference_client import InferenceClient, VisionResponse
from drawing_extraction.config import get_settings


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "slow: tests that take noticeable time")


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    """Reload settings for every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Sample data
# =============================================================================


FULL_PAYLOAD = {
    "schedules": [
        {
            "type": "beam_schedule",
            "entries": [
                {"mark": "W18x106", "size": "W18x106", "quantity": 4},
                {"mark": "W12x26", "size": "W12x26", "qty": "2"},
            ],
        }
    ],
    "beams": [
        {"mark": "W18x106", "length": "34'-6\"", "gridLocation": "A-B/1"},
        {"mark": "W12x26", "length": "20'-0\"", "gridLocation": "B-C/2"},
    ],
    "joists": [{"mark": "2x10", "spacing": "16\" OC"}],
    "dimensions": [{"location": "A-B", "value": "24'-6\""}],
    "itemCounts": [{"item": "beam", "mark": "W18x106", "count": 4}],
}


@pytest.fixture
def full_payload() -> dict:
    """Model payload that fills every scored category."""
    return json.loads(json.dumps(FULL_PAYLOAD))


@pytest.fixture
def full_response_text(full_payload) -> str:
    """Fenced model response carrying the full payload."""
    return "Here is the data:\n```json\n" + json.dumps(full_payload) + "\n```"


@pytest.fixture
def page_image(tmp_path: Path) -> Path:
    """Small PNG-like file standing in for a rendered drawing page."""
    image = tmp_path / "page-3.png"
    image.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)
    return image


# =============================================================================
# Inference client doubles
# =============================================================================


def make_response(content: str, model: str = "glm-ocr") -> VisionResponse:
    """VisionResponse with the given content."""
    return VisionResponse(content=content, model=model)


@pytest.fixture
def scripted_client() -> Callable[..., MagicMock]:
    """
    Factory for an InferenceClient double.

    ``generate`` answers from ``responder(request)``, which may return
    text or raise; ``list_models`` returns ``models``.
    """

    def factory(
        responder: Callable[[object], str],
        models: list[str] | None = None,
    ) -> MagicMock:
        client = MagicMock(spec=InferenceClient)
        client.max_tokens = 4096
        client.default_model = "glm-ocr"

        async def generate(request):
            return make_response(responder(request), model=request.model)

        client.generate = AsyncMock(side_effect=generate)
        client.list_models = AsyncMock(return_value=list(models or []))
        return client

    return factory
