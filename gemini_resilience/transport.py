# gemini_resilience/transport.py

"""
Transport abstraction and the Gemini REST implementation.

The resilience core only depends on the ``Transport`` protocol; connection
pooling and TLS are the HTTP client's business.
"""

import json
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from .exceptions import MalformedResponseError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
MAX_ERROR_BODY_CHARS = 500


@runtime_checkable
class Transport(Protocol):
    """A single request/response exchange with a timeout."""

    async def send(
        self, endpoint: str, payload: dict[str, Any], timeout: float
    ) -> dict[str, Any]: ...


class HttpxTransport:
    """Gemini ``generateContent`` transport over httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            api_key: Gemini API key, sent as the ``x-goog-api-key`` header
            base_url: Models endpoint base URL
            client: Optional preconfigured client (tests pass a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
        )
        self._api_key = api_key

    async def send(
        self, endpoint: str, payload: dict[str, Any], timeout: float
    ) -> dict[str, Any]:
        """POST the payload to ``{base_url}/{endpoint}`` and decode JSON.

        Args:
            endpoint: e.g. ``gemini-2.0-flash:generateContent``
            payload: Request body produced by the request builder
            timeout: Transport timeout in seconds

        Returns:
            The decoded JSON object

        Raises:
            TransportError: On HTTP errors or network failures
            MalformedResponseError: If the body is not a JSON object
        """
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout calling {endpoint}: {e}", original_error=e) from e
        except httpx.TransportError as e:
            raise TransportError(f"Network error calling {endpoint}: {e}", original_error=e) from e

        check_response_status(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            # Covers invalid JSON and bodies that are not valid UTF-8
            raise MalformedResponseError(
                f"non-JSON body: {e}", response.text[:MAX_ERROR_BODY_CHARS]
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"body is {type(data).__name__}, expected an object",
                response.text[:MAX_ERROR_BODY_CHARS],
            )
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def check_response_status(status_code: int, body: str) -> None:
    """Raise TransportError for any non-200 status.

    The status code is always carried on the error so classification does
    not depend on message wording.
    """
    if status_code == 200:
        return

    if status_code == 400:
        logger.error(f"Gemini API 400 error details: {body[:MAX_ERROR_BODY_CHARS]}")
        message = "Gemini API bad request (400): check the request format"
        try:
            error = json.loads(body).get("error")
        except (ValueError, AttributeError):
            error = None
        if isinstance(error, dict):
            message = (
                f"Gemini API error ({error.get('code', 400)}): "
                f"{error.get('message', 'Bad request')}"
            )
        raise TransportError(message, status_code=400, body=body)

    if status_code == 401:
        raise TransportError("Gemini API unauthorized (401): invalid API key", status_code=401)

    if status_code == 403:
        raise TransportError(
            "Gemini API forbidden (403): API key may be restricted", status_code=403
        )

    if status_code == 429:
        raise TransportError(
            "Gemini API rate limited (429): too many requests", status_code=429, body=body
        )

    logger.error(f"Gemini API error {status_code}: {body[:MAX_ERROR_BODY_CHARS]}")
    raise TransportError(
        f"Gemini API error: {status_code}",
        status_code=status_code,
        body=body[:MAX_ERROR_BODY_CHARS],
    )
