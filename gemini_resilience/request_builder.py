# gemini_resilience/request_builder.py

"""
Request payloads for the Gemini generateContent endpoint.

The resilience core treats these payloads as opaque; this module only
builds and validates them.
"""

import base64
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from pydantic import BaseModel, Field

from .exceptions import RequestValidationError

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 20000
MAX_IMAGE_SIZE_BYTES = 20 * 1024 * 1024
SUPPORTED_IMAGE_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")
SEGMENTATION_SYSTEM_PROMPT = (
    "You are an expert in computer vision and object segmentation. "
    "Provide accurate segmentation masks for the requested objects."
)


class RequestKind(str, Enum):
    """Request shapes, each tied to a rate-limited operation key."""

    TEXT = "gemini_text"
    MULTIMODAL = "gemini_multimodal"
    SEGMENTATION = "gemini_segmentation"
    OBJECT_DETECTION = "gemini_object_detection"
    IMAGE_GENERATION = "gemini_image_generation"

    @property
    def operation_key(self) -> str:
        return self.value

    @property
    def requires_image(self) -> bool:
        return self in (
            RequestKind.MULTIMODAL,
            RequestKind.SEGMENTATION,
            RequestKind.OBJECT_DETECTION,
        )


class GenerationSettings(BaseModel):
    """Sampling parameters shared by every request kind."""

    model: str = "gemini-2.0-flash"
    image_model: str = "gemini-2.0-flash-preview-image-generation"
    temperature: float = Field(default=0.4, ge=0, le=2)
    low_temperature: float = Field(default=0.1, ge=0, le=2)
    image_temperature_multiplier: float = 0.75
    max_output_tokens: int = Field(default=1024, ge=1)
    top_k: int = Field(default=40, ge=1)
    top_p: float = Field(default=0.95, gt=0, le=1)


@dataclass(frozen=True)
class RequestParams:
    """Domain parameters for one request."""

    prompt: str
    image_bytes: bytes | None = None
    mime_type: str = "image/jpeg"
    confidence_threshold: float | None = None


def validate_params(kind: RequestKind, params: RequestParams) -> None:
    """Reject requests that cannot succeed before they are sent.

    Raises:
        RequestValidationError: On an invalid prompt, image or threshold
    """
    prompt = params.prompt.strip() if isinstance(params.prompt, str) else ""
    if not prompt:
        raise RequestValidationError("Prompt cannot be empty")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise RequestValidationError(f"Prompt too long (max {MAX_PROMPT_LENGTH} characters)")

    if params.image_bytes is None:
        if kind.requires_image:
            raise RequestValidationError(f"{kind.value} requests require an image")
    else:
        if len(params.image_bytes) == 0:
            raise RequestValidationError("Image bytes cannot be empty")
        if len(params.image_bytes) > MAX_IMAGE_SIZE_BYTES:
            raise RequestValidationError(
                f"Image too large (max {MAX_IMAGE_SIZE_BYTES // (1024 * 1024)}MB)"
            )
        if params.mime_type not in SUPPORTED_IMAGE_MIME_TYPES:
            raise RequestValidationError(f"Unsupported image type: {params.mime_type}")

    threshold = params.confidence_threshold
    if threshold is not None and not 0.0 <= threshold <= 1.0:
        raise RequestValidationError("Confidence threshold must be between 0.0 and 1.0")


class GeminiRequestBuilder:
    """Builds generateContent request bodies."""

    def __init__(self, settings: GenerationSettings | None = None) -> None:
        self.settings = settings or GenerationSettings()

    def endpoint(self, kind: RequestKind) -> str:
        """Endpoint path relative to the models base URL."""
        model = (
            self.settings.image_model
            if kind == RequestKind.IMAGE_GENERATION
            else self.settings.model
        )
        return f"{model}:generateContent"

    def build(self, kind: RequestKind, params: RequestParams) -> dict[str, Any]:
        """Validate the parameters and build the request body.

        Args:
            kind: Request shape
            params: Domain parameters

        Returns:
            JSON-serialisable request body

        Raises:
            RequestValidationError: If the parameters are invalid
        """
        validate_params(kind, params)

        parts: list[dict[str, Any]] = [{"text": params.prompt}]
        if params.image_bytes is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": params.mime_type,
                        "data": base64.b64encode(params.image_bytes).decode("ascii"),
                    }
                }
            )

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": self._generation_config(kind),
        }
        if kind == RequestKind.SEGMENTATION:
            payload["systemInstruction"] = {"parts": [{"text": SEGMENTATION_SYSTEM_PROMPT}]}

        logger.debug(f"Built {kind.value} request with {len(parts)} parts")
        return payload

    def _generation_config(self, kind: RequestKind) -> dict[str, Any]:
        s = self.settings
        config: dict[str, Any] = {
            "temperature": s.temperature,
            "maxOutputTokens": s.max_output_tokens,
            "topK": s.top_k,
            "topP": s.top_p,
        }
        if kind in (RequestKind.SEGMENTATION, RequestKind.OBJECT_DETECTION):
            # Low temperature for consistent structured output
            config["temperature"] = s.low_temperature
            config["responseMimeType"] = "application/json"
        elif kind == RequestKind.IMAGE_GENERATION:
            config["temperature"] = s.temperature * s.image_temperature_multiplier
            config["maxOutputTokens"] = s.max_output_tokens * 2
            config["responseModalities"] = ["TEXT", "IMAGE"]
        return config
