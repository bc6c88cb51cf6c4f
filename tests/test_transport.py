"""Tests for the httpx transport."""

import json

import httpx
import pytest

from gemini_resilience.error_classifier import ErrorClassifier
from gemini_resilience.exceptions import MalformedResponseError, TransportError
from gemini_resilience.models import ErrorClassification
from gemini_resilience.transport import HttpxTransport, Transport, check_response_status

from conftest import text_response

BASE_URL = "https://gemini.test/v1beta/models"
ENDPOINT = "gemini-2.0-flash:generateContent"


def make_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxTransport(api_key="test-key", base_url=BASE_URL, client=client)


class TestSend:
    """Tests for request/response handling."""

    async def test_posts_json_with_api_key(self):
        """Should POST the payload with the API key header."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=text_response("hi"))

        transport = make_transport(handler)

        data = await transport.send(ENDPOINT, {"contents": []}, timeout=5.0)

        assert data == text_response("hi")
        assert seen["url"] == f"{BASE_URL}/{ENDPOINT}"
        assert seen["key"] == "test-key"
        assert seen["body"] == {"contents": []}
        assert isinstance(transport, Transport)

    async def test_non_json_body_is_malformed(self):
        """Should surface a non-JSON 200 body as a malformed response."""
        transport = make_transport(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(MalformedResponseError) as exc_info:
            await transport.send(ENDPOINT, {}, timeout=5.0)

        assert "<html>" in exc_info.value.snippet

    async def test_invalid_utf8_body_is_malformed(self):
        """Should surface an undecodable 200 body as a retryable malformed response."""
        transport = make_transport(
            lambda request: httpx.Response(200, content=b'{"a": "\xff\xfe"}')
        )

        with pytest.raises(MalformedResponseError) as exc_info:
            await transport.send(ENDPOINT, {}, timeout=5.0)

        assert exc_info.value.snippet
        assert ErrorClassifier().classify(exc_info.value) == ErrorClassification.RETRYABLE

    async def test_json_array_body_is_malformed(self):
        """Should require a JSON object at the top level."""
        transport = make_transport(lambda request: httpx.Response(200, json=[1, 2]))

        with pytest.raises(MalformedResponseError):
            await transport.send(ENDPOINT, {}, timeout=5.0)

    async def test_timeout_maps_to_retryable_transport_error(self):
        """Should wrap httpx timeouts as retryable transport errors."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError) as exc_info:
            await make_transport(handler).send(ENDPOINT, {}, timeout=0.1)

        assert "timeout" in str(exc_info.value).lower()
        assert ErrorClassifier().classify(exc_info.value) == ErrorClassification.RETRYABLE

    async def test_network_error_is_retryable(self):
        """Should wrap connection failures as retryable transport errors."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await make_transport(handler).send(ENDPOINT, {}, timeout=1.0)

        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        assert ErrorClassifier().classify(exc_info.value) == ErrorClassification.RETRYABLE

    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, ErrorClassification.FATAL),
            (403, ErrorClassification.FATAL),
            (429, ErrorClassification.RETRYABLE),
            (500, ErrorClassification.RETRYABLE),
            (503, ErrorClassification.RETRYABLE),
        ],
    )
    async def test_http_errors_keep_status(self, status, expected):
        """Should raise TransportError carrying the HTTP status."""
        transport = make_transport(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(TransportError) as exc_info:
            await transport.send(ENDPOINT, {}, timeout=1.0)

        assert exc_info.value.status_code == status
        assert ErrorClassifier().classify(exc_info.value) == expected

    async def test_aclose_leaves_injected_client_open(self):
        """Should not close a client it does not own."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        transport = HttpxTransport(api_key="k", client=client)

        await transport.aclose()

        assert not client.is_closed
        await client.aclose()


class TestCheckResponseStatus:
    """Tests for status-code handling."""

    def test_ok_passes(self):
        """Should accept 200."""
        check_response_status(200, "{}")

    def test_bad_request_uses_api_message(self):
        """Should include the API error message for a 400."""
        body = json.dumps({"error": {"code": 400, "message": "Invalid JSON payload"}})

        with pytest.raises(TransportError) as exc_info:
            check_response_status(400, body)

        assert "Invalid JSON payload" in str(exc_info.value)
        assert exc_info.value.status_code == 400

    def test_bad_request_with_unparseable_body(self):
        """Should fall back to a generic message for an opaque 400 body."""
        with pytest.raises(TransportError, match="bad request") as exc_info:
            check_response_status(400, "not json")

        assert exc_info.value.status_code == 400

    def test_other_status_truncates_body(self):
        """Should keep a bounded copy of the body."""
        with pytest.raises(TransportError) as exc_info:
            check_response_status(502, "x" * 2000)

        assert exc_info.value.status_code == 502
        assert len(exc_info.value.body) == 500
