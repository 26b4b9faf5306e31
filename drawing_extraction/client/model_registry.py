"""
Registry of the vision models taking part in multi-model consensus.

Each configured model carries a vote weight, a sampling temperature and
a confidence bonus. The registry decides which of them the inference
server can actually serve right now.
"""

from __future__ import annotations

from typing import Any

from drawing_extraction.client.inference_client import InferenceClient, InferenceError
from drawing_extraction.config import EnsembleModel, get_logger, get_settings


logger = get_logger(__name__)


def _is_same_model(configured: str, listed: str) -> bool:
    """Ollama lists untagged models with an implicit ``:latest`` tag."""
    return listed == configured or listed == f"{configured}:latest"


class ModelRegistry:
    """
    Configured ensemble models and their availability.

    Example:
        registry = ModelRegistry(client)
        ready = await registry.ensure_models_available()
        if len(ready) >= 2:
            ...
    """

    def __init__(
        self,
        client: InferenceClient,
        models: list[EnsembleModel] | None = None,
    ) -> None:
        self._client = client
        self._models: list[EnsembleModel] = list(
            models if models is not None else get_settings().ensemble.models
        )

    @property
    def models(self) -> list[EnsembleModel]:
        """Configured models in declaration order."""
        return list(self._models)

    def get(self, name: str) -> EnsembleModel | None:
        """Look up a configured model by name."""
        for model in self._models:
            if model.name == name:
                return model
        return None

    async def ensure_models_available(self) -> list[EnsembleModel]:
        """
        Configured models the inference server currently lists.

        Missing models are reported, never pulled. A failed listing means
        no model is available.

        Returns:
            Available models in configuration order.
        """
        try:
            listed = await self._client.list_models()
        except InferenceError as e:
            logger.warning("model_listing_failed", error=str(e))
            return []

        available = [
            model
            for model in self._models
            if any(_is_same_model(model.name, name) for name in listed)
        ]
        missing = [m.name for m in self._models if m not in available]
        if missing:
            logger.info(
                "ensemble_models_missing",
                missing=missing,
                available=[m.name for m in available],
            )
        return available

    def to_dict(self) -> dict[str, Any]:
        """Serialise the configured models."""
        return {"models": [model.model_dump() for model in self._models]}
