"""
Client module for local vision inference.

Provides the async inference adapter (retries, timeouts, error mapping)
and the registry of models used for multi-model consensus.
"""

from drawing_extraction.client.inference_client import (
    InferenceClient,
    InferenceConnectionError,
    InferenceError,
    InferenceRateLimitError,
    InferenceResponseError,
    InferenceTimeoutError,
    InferenceValidationError,
    VisionRequest,
    VisionResponse,
    encode_image,
)
from drawing_extraction.client.model_registry import ModelRegistry


__all__ = [
    "InferenceClient",
    "VisionRequest",
    "VisionResponse",
    "encode_image",
    "InferenceError",
    "InferenceConnectionError",
    "InferenceTimeoutError",
    "InferenceRateLimitError",
    "InferenceResponseError",
    "InferenceValidationError",
    "ModelRegistry",
]
