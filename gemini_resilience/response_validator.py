# gemini_resilience/response_validator.py

"""
Response validation and classification for generateContent payloads.

Every function here is total: for any input it returns one of the
ResponseOutcome variants and never raises.
"""

from abc import ABC, abstractmethod
import base64
import binascii
from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Generic, TypeVar

from .exceptions import (
    ContentFilteredError,
    EmptyResponseError,
    MalformedResponseError,
    ResponseError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANDIDATES_KEY = "candidates"
CONTENT_KEY = "content"
PARTS_KEY = "parts"
TEXT_KEY = "text"
FINISH_REASON_KEY = "finishReason"
PROMPT_FEEDBACK_KEY = "promptFeedback"
BLOCK_REASON_KEY = "blockReason"

# finishReason values that mean the content was withheld
FILTERED_FINISH_REASONS = frozenset(
    {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII", "RECITATION", "IMAGE_SAFETY"}
)

MAX_SNIPPET_CHARS = 1000

_CODE_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_CODE_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_OUTER_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_OUTER_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ResponseOutcome(ABC):
    """Result of validating one raw response. Never mutated."""

    ok: bool = False

    def unwrap(self) -> Any:
        """Return the payload or raise the matching ResponseError."""
        raise self.to_error()

    @abstractmethod
    def to_error(self) -> ResponseError:
        """Typed error for this outcome."""


@dataclass(frozen=True)
class Success(ResponseOutcome, Generic[T]):
    payload: T
    ok = True

    def unwrap(self) -> T:
        return self.payload

    def to_error(self) -> ResponseError:
        raise ValueError("Success has no error")


@dataclass(frozen=True)
class Empty(ResponseOutcome):
    detail: str = "Empty response"

    def to_error(self) -> ResponseError:
        return EmptyResponseError(self.detail)


@dataclass(frozen=True)
class Filtered(ResponseOutcome):
    reason: str

    def to_error(self) -> ResponseError:
        return ContentFilteredError(self.reason)


@dataclass(frozen=True)
class Malformed(ResponseOutcome):
    detail: str
    snippet: str | None = None

    def to_error(self) -> ResponseError:
        return MalformedResponseError(self.detail, self.snippet)


def _snippet(raw: Any) -> str:
    text = raw if isinstance(raw, str) else repr(raw)
    if len(text) > MAX_SNIPPET_CHARS:
        return text[:MAX_SNIPPET_CHARS] + "...[truncated]"
    return text


def _first_candidate_parts(response: Any) -> list[Any] | ResponseOutcome:
    """Walk response -> candidates[0] -> content -> parts.

    Returns the parts list, or a Filtered / Malformed outcome.
    """
    if not isinstance(response, dict):
        return Malformed(f"Response is {type(response).__name__}, not an object", _snippet(response))

    feedback = response.get(PROMPT_FEEDBACK_KEY)
    if isinstance(feedback, dict) and feedback.get(BLOCK_REASON_KEY):
        return Filtered(f"prompt blocked: {feedback[BLOCK_REASON_KEY]}")

    candidates = response.get(CANDIDATES_KEY)
    if not isinstance(candidates, list) or not candidates:
        return Malformed("No candidates in response", _snippet(response))

    candidate = candidates[0]
    if not isinstance(candidate, dict):
        return Malformed("Candidate is not an object", _snippet(candidate))

    finish_reason = candidate.get(FINISH_REASON_KEY)
    if isinstance(finish_reason, str) and finish_reason.upper() in FILTERED_FINISH_REASONS:
        return Filtered(f"finish reason {finish_reason}")

    content = candidate.get(CONTENT_KEY)
    if not isinstance(content, dict):
        return Malformed("No content in response candidate", _snippet(candidate))

    parts = content.get(PARTS_KEY)
    if not isinstance(parts, list) or not parts:
        # A bare {"role": "model"} content lands here.
        return Malformed("No content parts in response", _snippet(content))

    return parts


def extract_text(response: Any) -> ResponseOutcome:
    """Extract the first non-blank text part, trimmed.

    Returns:
        Success(str), Filtered, Empty when every text part is blank, or
        Malformed when the candidate/content/parts structure is missing.
    """
    parts = _first_candidate_parts(response)
    if isinstance(parts, ResponseOutcome):
        logger.debug(f"Text extraction failed: {parts}")
        return parts

    texts = [
        part[TEXT_KEY]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get(TEXT_KEY), str)
    ]
    if not texts:
        return Malformed("No text parts in response", _snippet(parts))

    for text in texts:
        if text.strip():
            return Success(text.strip())

    return Empty("All text parts are blank")


def _inline_data(part: Any) -> dict[str, Any] | None:
    if not isinstance(part, dict):
        return None
    inline = part.get("inline_data", part.get("inlineData"))
    return inline if isinstance(inline, dict) else None


def extract_binary(response: Any) -> ResponseOutcome:
    """Extract and decode the first inline image part.

    Returns:
        Success(bytes), Filtered, or Malformed when no decodable image part
        is present.
    """
    parts = _first_candidate_parts(response)
    if isinstance(parts, ResponseOutcome):
        logger.debug(f"Image extraction failed: {parts}")
        return parts

    for part in parts:
        inline = _inline_data(part)
        if inline is None:
            continue
        mime_type = inline.get("mime_type", inline.get("mimeType"))
        data = inline.get("data")
        if not (isinstance(mime_type, str) and mime_type.startswith("image/")):
            continue
        if not isinstance(data, str):
            return Malformed(f"Inline {mime_type} part has no data")
        try:
            image_bytes = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            return Malformed(f"Inline {mime_type} data is not valid base64: {e}", _snippet(data))
        if not image_bytes:
            return Malformed(f"Inline {mime_type} data is empty")
        logger.debug(f"Extracted inline image ({len(image_bytes)} bytes, {mime_type})")
        return Success(image_bytes)

    return Malformed("No image data found in response", _snippet(parts))


def strip_code_fences(raw_text: str) -> str:
    """Remove a surrounding markdown code fence such as ```json ... ```."""
    cleaned = raw_text.strip()
    if cleaned.startswith("```"):
        cleaned = _CODE_FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _CODE_FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def _fallback_json(text: str) -> Any:
    """Parse the outermost JSON array or object embedded in free text."""
    matches = [m for m in (_OUTER_ARRAY.search(text), _OUTER_OBJECT.search(text)) if m]
    # Whichever bracket opens first is the outermost value.
    for match in sorted(matches, key=lambda m: m.start()):
        try:
            return json.loads(match.group(0))
        except ValueError:
            continue
    raise ValueError("No embedded JSON array or object found")


def extract_structured(raw_text: Any) -> ResponseOutcome:
    """Parse JSON embedded in a text response.

    Strips markdown fences, parses, and on failure tries the outermost
    bracketed array/object. The raw text is preserved in Malformed.snippet.

    Returns:
        Success(list | dict), Empty for blank input, or Malformed
    """
    if not isinstance(raw_text, str):
        return Malformed(f"Expected text, got {type(raw_text).__name__}", _snippet(raw_text))

    cleaned = strip_code_fences(raw_text)
    if not cleaned:
        return Empty("Empty response after cleanup")

    try:
        parsed = json.loads(cleaned)
    except ValueError as e:
        logger.warning(f"Failed to parse structured response: {e}")
        try:
            parsed = _fallback_json(cleaned)
        except (ValueError, RecursionError) as fallback_error:
            logger.warning(f"Fallback JSON extraction also failed: {fallback_error}")
            return Malformed(f"JSON parse error: {e}", _snippet(raw_text))
        logger.info("Recovered structured response with fallback extraction")
    except RecursionError as e:
        return Malformed(f"JSON parse error: {e}", _snippet(raw_text))

    if not isinstance(parsed, (list, dict)):
        return Malformed(
            f"Unexpected JSON structure: {type(parsed).__name__}", _snippet(raw_text)
        )
    return Success(parsed)


def extract_masks(raw_text: Any) -> ResponseOutcome:
    """Parse a segmentation response into ``{"masks": [...], ...}``."""
    outcome = extract_structured(raw_text)
    if not isinstance(outcome, Success):
        return outcome

    payload = outcome.payload
    if isinstance(payload, list):
        return Success({"masks": payload})

    masks = payload.get("masks", [])
    if not isinstance(masks, list):
        return Malformed("'masks' is not a list", _snippet(raw_text))
    return Success({**payload, "masks": masks})
