# gemini_resilience/__init__.py

"""Resilience layer for Gemini API calls.

Rate limiting, circuit breaking, retries with jittered backoff and response
validation, composed behind a single ResilientCaller.

Example usage:
    from gemini_resilience import GeminiClient, HttpxTransport, build_resilient_caller

    caller = build_resilient_caller()
    client = GeminiClient(caller, HttpxTransport(api_key="..."))
    text = await client.generate_text("Summarise this incident")
"""

from .audit import AuditSink, InMemoryAuditSink, StructlogAuditSink
from .circuit_breaker import CircuitBreaker
from .client import GeminiClient
from .config import RateLimitRule, ResilienceSettings
from .error_classifier import ErrorClassifier
from .exceptions import (
    CallTimeoutError,
    CircuitOpenError,
    ContentFilteredError,
    EmptyResponseError,
    MalformedResponseError,
    MaxRetriesExceededError,
    RateLimitExceededError,
    RequestValidationError,
    ResilienceError,
    ResponseError,
    TransportError,
)
from .models import AuditEvent, CircuitStatus, ErrorClassification, RetryAttempt
from .rate_limiter import RateLimiter
from .request_builder import GeminiRequestBuilder, GenerationSettings, RequestKind, RequestParams
from .resilient_caller import ResilientCaller, build_resilient_caller
from .response_validator import (
    Empty,
    Filtered,
    Malformed,
    ResponseOutcome,
    Success,
    extract_binary,
    extract_masks,
    extract_structured,
    extract_text,
)
from .retry_handler import JitteredExponentialBackoff, RetryExecutor
from .transport import HttpxTransport, Transport

__all__ = [
    "AuditEvent",
    "AuditSink",
    "CallTimeoutError",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitStatus",
    "ContentFilteredError",
    "Empty",
    "EmptyResponseError",
    "ErrorClassification",
    "ErrorClassifier",
    "Filtered",
    "GeminiClient",
    "GeminiRequestBuilder",
    "GenerationSettings",
    "HttpxTransport",
    "InMemoryAuditSink",
    "JitteredExponentialBackoff",
    "Malformed",
    "MalformedResponseError",
    "MaxRetriesExceededError",
    "RateLimitExceededError",
    "RateLimitRule",
    "RateLimiter",
    "RequestKind",
    "RequestParams",
    "RequestValidationError",
    "ResilienceError",
    "ResilienceSettings",
    "ResilientCaller",
    "ResponseError",
    "ResponseOutcome",
    "RetryAttempt",
    "RetryExecutor",
    "StructlogAuditSink",
    "Success",
    "Transport",
    "TransportError",
    "build_resilient_caller",
    "extract_binary",
    "extract_masks",
    "extract_structured",
    "extract_text",
]
