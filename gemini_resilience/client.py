# gemini_resilience/client.py

"""
Gemini client facade.

Each method builds a request, sends it through the shared ResilientCaller
and validates the response inside the retry loop, so empty, filtered and
malformed responses are retried like transient transport errors.
"""

from collections.abc import Callable
import logging
from typing import Any

from .request_builder import GeminiRequestBuilder, RequestKind, RequestParams
from .resilient_caller import ResilientCaller
from .response_validator import (
    ResponseOutcome,
    extract_binary,
    extract_masks,
    extract_structured,
    extract_text,
)
from .transport import Transport

logger = logging.getLogger(__name__)


class GeminiClient:
    """Resilient Gemini operations over a pluggable transport."""

    def __init__(
        self,
        caller: ResilientCaller,
        transport: Transport,
        builder: GeminiRequestBuilder | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            caller: Shared resilient caller; construct once per process
            transport: Transport used for every attempt
            builder: Request builder, defaults to standard generation settings
            request_timeout: Timeout handed to the transport per attempt
        """
        self.caller = caller
        self.transport = transport
        self.builder = builder or GeminiRequestBuilder()
        self.request_timeout = request_timeout

    async def _call(
        self,
        kind: RequestKind,
        params: RequestParams,
        extract: Callable[[Any], ResponseOutcome],
        deadline: float | None = None,
    ) -> Any:
        # Validation errors surface before the rate limiter is consulted
        payload = self.builder.build(kind, params)
        endpoint = self.builder.endpoint(kind)

        async def attempt() -> Any:
            response = await self.transport.send(endpoint, payload, self.request_timeout)
            return extract(response).unwrap()

        logger.debug(f"Dispatching {kind.value} request to {endpoint}")
        return await self.caller.execute(kind.operation_key, attempt, deadline=deadline)

    async def generate_text(self, prompt: str, deadline: float | None = None) -> str:
        """Generate text from a prompt."""
        return await self._call(
            RequestKind.TEXT, RequestParams(prompt=prompt), extract_text, deadline
        )

    async def analyze_image(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        deadline: float | None = None,
    ) -> str:
        """Describe or answer a question about an image."""
        params = RequestParams(prompt=prompt, image_bytes=image_bytes, mime_type=mime_type)
        return await self._call(RequestKind.MULTIMODAL, params, extract_text, deadline)

    async def segment(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        confidence_threshold: float | None = None,
        deadline: float | None = None,
    ) -> dict[str, Any]:
        """Request segmentation masks.

        Returns:
            Parsed payload with a ``masks`` list. Masks below
            ``confidence_threshold`` are dropped when a threshold is given.
        """
        params = RequestParams(
            prompt=prompt,
            image_bytes=image_bytes,
            mime_type=mime_type,
            confidence_threshold=confidence_threshold,
        )
        result = await self._call(
            RequestKind.SEGMENTATION,
            params,
            lambda response: _then(extract_text(response), extract_masks),
            deadline,
        )
        if confidence_threshold is not None:
            result["masks"] = _filter_by_confidence(result["masks"], confidence_threshold)
        return result

    async def detect_objects(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str = "image/jpeg",
        confidence_threshold: float | None = None,
        deadline: float | None = None,
    ) -> list[Any] | dict[str, Any]:
        """Request object detections as structured JSON."""
        params = RequestParams(
            prompt=prompt,
            image_bytes=image_bytes,
            mime_type=mime_type,
            confidence_threshold=confidence_threshold,
        )
        result = await self._call(
            RequestKind.OBJECT_DETECTION,
            params,
            lambda response: _then(extract_text(response), extract_structured),
            deadline,
        )
        if confidence_threshold is not None and isinstance(result, list):
            result = _filter_by_confidence(result, confidence_threshold)
        return result

    async def generate_image(
        self,
        prompt: str,
        image_bytes: bytes | None = None,
        mime_type: str = "image/png",
        deadline: float | None = None,
    ) -> bytes:
        """Generate an image, optionally from an input image."""
        params = RequestParams(prompt=prompt, image_bytes=image_bytes, mime_type=mime_type)
        return await self._call(RequestKind.IMAGE_GENERATION, params, extract_binary, deadline)

    async def aclose(self) -> None:
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()


def _then(
    outcome: ResponseOutcome, next_step: Callable[[Any], ResponseOutcome]
) -> ResponseOutcome:
    if not outcome.ok:
        return outcome
    return next_step(outcome.unwrap())


def _filter_by_confidence(items: list[Any], threshold: float) -> list[Any]:
    kept = []
    for item in items:
        confidence = item.get("confidence") if isinstance(item, dict) else None
        if not isinstance(confidence, (int, float)) or confidence >= threshold:
            kept.append(item)
    return kept
