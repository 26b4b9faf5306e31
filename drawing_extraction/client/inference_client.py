"""
Inference client for local vision models.

Talks to an OpenAI-compatible chat endpoint served by a local model
runner (Ollama or LM Studio). Every extraction tier goes through this
adapter, so retries, timeouts and error mapping live here and nowhere
else.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from drawing_extraction.config import get_logger, get_settings


logger = get_logger(__name__)


class InferenceError(Exception):
    """Base exception for inference client errors."""


class InferenceConnectionError(InferenceError):
    """Raised when the inference server cannot be reached."""


class InferenceTimeoutError(InferenceError):
    """Raised when a request exceeds its timeout."""


class InferenceRateLimitError(InferenceError):
    """Raised when the server keeps rejecting requests for rate limiting."""


class InferenceResponseError(InferenceError):
    """Raised when the server answers with an error or unusable payload."""


class InferenceValidationError(InferenceError):
    """Raised when a request cannot be built."""


class MessageRole(str, Enum):
    """Chat message roles."""

    SYSTEM = "system"
    USER = "user"


_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def encode_image(image_path: Path) -> str:
    """
    Read an image file and return it as a base64 data URI.

    Raises:
        InferenceValidationError: If the file does not exist.
    """
    image_path = Path(image_path)
    if not image_path.exists():
        raise InferenceValidationError(f"Image file not found: {image_path}")

    mime_type = _MIME_TYPES.get(image_path.suffix.lower(), "image/png")
    with open(image_path, "rb") as f:
        image_bytes = f.read()

    base64_data = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{base64_data}"


@dataclass(frozen=True, slots=True)
class VisionRequest:
    """
    Immutable container for one vision inference call.

    Attributes:
        image_data: Base64 data URI of the drawing image.
        prompt: Extraction prompt.
        model: Model identifier; the client default is used when empty.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens in the response.
        system_prompt: Optional system context.
        request_id: Identifier used in log events.
    """

    image_data: str
    prompt: str
    model: str = ""
    temperature: float = 0.3
    max_tokens: int = 4096
    system_prompt: str | None = None
    request_id: str = field(default_factory=lambda: f"req_{int(time.time() * 1000)}")

    @classmethod
    def from_file(
        cls,
        image_path: Path,
        prompt: str,
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 4096,
        system_prompt: str | None = None,
    ) -> "VisionRequest":
        """
        Create a VisionRequest from an image file.

        Raises:
            InferenceValidationError: If the file does not exist.
        """
        return cls(
            image_data=encode_image(image_path),
            prompt=prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )

    def messages(self) -> list[dict[str, Any]]:
        """Chat messages carrying the image and prompt."""
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append(
                {"role": MessageRole.SYSTEM.value, "content": self.system_prompt}
            )
        messages.append(
            {
                "role": MessageRole.USER.value,
                "content": [
                    {
                        "type": "image_url",
                        "image_url": {"url": self.image_data, "detail": "high"},
                    },
                    {"type": "text", "text": self.prompt},
                ],
            }
        )
        return messages


@dataclass(slots=True)
class VisionResponse:
    """
    Raw model answer.

    Attributes:
        content: Text content returned by the model.
        model: Model that produced the answer.
        usage: Token usage statistics.
        latency_ms: Wall-clock latency including retries.
        request_id: Identifier of the originating request.
    """

    content: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0
    request_id: str = ""

    @property
    def total_tokens(self) -> int:
        """Total tokens reported by the server, 0 when it sent no usage."""
        return self.usage.get("total_tokens", 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "content": self.content,
            "model": self.model,
            "usage": self.usage,
            "latency_ms": self.latency_ms,
            "request_id": self.request_id,
        }


class InferenceClient:
    """
    Async client for a local OpenAI-compatible vision server.

    Transient failures (connection drops, server-side timeouts, rate
    limiting) are retried with exponential backoff. Each attempt is also
    bounded by ``asyncio.wait_for`` so a hung server turns into an
    ``InferenceTimeoutError`` rather than a stuck tier.

    Example:
        async with InferenceClient() as client:
            request = VisionRequest.from_file(path, prompt, model="glm-ocr")
            response = await client.generate(request)
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: int | None = None,
        max_retries: int | None = None,
        retry_min_wait: int | None = None,
        retry_max_wait: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the inference client.

        Args:
            base_url: Server URL including ``/v1``. Defaults to settings.
            model: Default model identifier. Defaults to settings.
            max_tokens: Default max tokens. Defaults to settings.
            timeout: Per-attempt timeout in seconds. Defaults to settings.
            max_retries: Maximum attempts. Defaults to settings.
            retry_min_wait: Minimum retry wait in seconds. Defaults to settings.
            retry_max_wait: Maximum retry wait in seconds. Defaults to settings.
            http_client: HTTP client used for model listing.
        """
        settings = get_settings()

        self._base_url = (base_url or str(settings.inference.base_url)).rstrip("/")
        self._model = model or settings.inference.model
        self._max_tokens = max_tokens or settings.inference.max_tokens
        self._timeout = timeout or settings.inference.timeout
        self._max_retries = max_retries or settings.inference.max_retries
        self._retry_min_wait = (
            settings.inference.retry_min_wait if retry_min_wait is None else retry_min_wait
        )
        self._retry_max_wait = (
            settings.inference.retry_max_wait if retry_max_wait is None else retry_max_wait
        )

        self._async_client: AsyncOpenAI | None = None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=self._base_url.removesuffix("/v1"),
            timeout=10.0,
        )
        self._closed = False

        logger.info(
            "inference_client_initialized",
            base_url=self._base_url,
            model=self._model,
            timeout=self._timeout,
        )

    @property
    def default_model(self) -> str:
        """Model used when a request does not name one."""
        return self._model

    @property
    def max_tokens(self) -> int:
        """Default response token limit."""
        return self._max_tokens

    def _get_client(self) -> AsyncOpenAI:
        """Get or lazily create the async OpenAI client."""
        if self._async_client is None:
            self._async_client = AsyncOpenAI(
                base_url=self._base_url,
                api_key="not-needed",  # local runners do not check keys
                timeout=float(self._timeout),
                max_retries=0,  # retries are handled by tenacity
            )
        return self._async_client

    def _build_retryer(self) -> AsyncRetrying:
        """Fresh retry policy; AsyncRetrying keeps per-run state."""
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=1,
                min=self._retry_min_wait,
                max=self._retry_max_wait,
            ),
            retry=retry_if_exception_type(
                (APIConnectionError, APITimeoutError, RateLimitError)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _send_once(self, request: VisionRequest) -> Any:
        client = self._get_client()
        return await asyncio.wait_for(
            client.chat.completions.create(
                model=request.model or self._model,
                messages=request.messages(),
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            ),
            timeout=float(self._timeout),
        )

    async def generate(self, request: VisionRequest) -> VisionResponse:
        """
        Send a vision request and return the raw model text.

        Args:
            request: VisionRequest to send.

        Returns:
            VisionResponse with the model output.

        Raises:
            InferenceTimeoutError: If an attempt exceeds the timeout.
            InferenceConnectionError: If the server stays unreachable.
            InferenceRateLimitError: If rate limiting persists after retries.
            InferenceResponseError: If the server returns an error status.
        """
        model = request.model or self._model
        start_time = time.perf_counter()

        try:
            async for attempt in self._build_retryer():
                with attempt:
                    response = await self._send_once(request)
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(
                f"Request to {model} timed out after {self._timeout}s"
            ) from e
        except APITimeoutError as e:
            raise InferenceTimeoutError(
                f"Request to {model} timed out after {self._max_retries} attempts: {e}"
            ) from e
        except APIConnectionError as e:
            raise InferenceConnectionError(
                f"Connection failed after {self._max_retries} attempts: {e}"
            ) from e
        except RateLimitError as e:
            raise InferenceRateLimitError(
                f"Rate limited after {self._max_retries} attempts: {e}"
            ) from e
        except APIStatusError as e:
            raise InferenceResponseError(
                f"Server rejected request for {model}: {e.status_code} {e}"
            ) from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise InferenceResponseError(f"Malformed response from {model}") from e

        usage = response.usage
        vision_response = VisionResponse(
            content=content,
            model=getattr(response, "model", None) or model,
            usage={
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
            latency_ms=latency_ms,
            request_id=request.request_id,
        )

        logger.info(
            "vision_request_complete",
            request_id=request.request_id,
            model=model,
            latency_ms=latency_ms,
            tokens=vision_response.total_tokens,
            content_length=len(content),
        )
        return vision_response

    async def list_models(self) -> list[str]:
        """
        Identifiers of the models installed on the server.

        Raises:
            InferenceConnectionError: If the server cannot be reached.
            InferenceResponseError: If the listing cannot be read.
        """
        try:
            response = await self._http_client.get("/v1/models")
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            raise InferenceConnectionError(f"Failed to connect to inference server: {e}") from e
        except httpx.TimeoutException as e:
            raise InferenceTimeoutError(f"Model listing timed out: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise InferenceResponseError(f"Failed to list models: {e}") from e

        return [
            str(entry["id"])
            for entry in data.get("data", [])
            if isinstance(entry, dict) and entry.get("id")
        ]

    async def is_healthy(self) -> bool:
        """True when the model listing succeeds."""
        try:
            await self.list_models()
        except InferenceError:
            return False
        return True

    async def aclose(self) -> None:
        """Close the HTTP and OpenAI clients; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True

        await self._http_client.aclose()
        if self._async_client is not None:
            await self._async_client.close()

        logger.debug("inference_client_closed")

    async def __aenter__(self) -> "InferenceClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
