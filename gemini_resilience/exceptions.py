# gemini_resilience/exceptions.py

"""Exceptions for the resilience framework."""

from typing import Any

from .models import ErrorClassification, RetryAttempt


class ResilienceError(Exception):
    """Base exception for resilience framework errors.

    Attributes:
        message: Error message
        context: Additional context information
        original_error: Original exception that caused this error
        classification: Handling category, None when it depends on the instance
    """

    classification: ErrorClassification | None = None

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        """Initialize the resilience error.

        Args:
            message: Error message
            context: Additional context information
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for logging and auditing."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "classification": (
                self.classification.value if self.classification else None
            ),
            "context": self.context,
            "original_error": str(self.original_error) if self.original_error else None,
        }


class RateLimitExceededError(ResilienceError):
    """Raised when the local rate limiter denies admission."""

    classification = ErrorClassification.RATE_LIMITED

    def __init__(
        self,
        operation_key: str,
        limit: int,
        window_seconds: float,
        retry_after: float,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the rate limit exceeded error.

        Args:
            operation_key: Operation whose window is full
            limit: Maximum requests allowed in the window
            window_seconds: Window duration in seconds
            retry_after: Seconds until the oldest request leaves the window
            context: Additional context information
        """
        message = (
            f"Rate limit for '{operation_key}' exceeded. "
            f"Limit: {limit}/{window_seconds:g}s, retry after {retry_after:.2f}s"
        )
        super().__init__(message, context)
        self.operation_key = operation_key
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after


class CircuitOpenError(ResilienceError):
    """Raised when the circuit breaker rejects a call without invoking it."""

    classification = ErrorClassification.CIRCUIT_OPEN

    def __init__(
        self,
        operation_key: str,
        failure_count: int,
        failure_threshold: int,
        retry_after: float = 0.0,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the circuit open error.

        Args:
            operation_key: Operation whose circuit is open
            failure_count: Current failure count
            failure_threshold: Failure threshold
            retry_after: Seconds until a probe will be allowed
            context: Additional context information
        """
        message = (
            f"Circuit breaker '{operation_key}' is open. "
            f"Failures: {failure_count}/{failure_threshold}"
        )
        super().__init__(message, context)
        self.operation_key = operation_key
        self.failure_count = failure_count
        self.failure_threshold = failure_threshold
        self.retry_after = retry_after


class CallTimeoutError(ResilienceError):
    """Raised when a single attempt exceeds its wall-clock timeout."""

    classification = ErrorClassification.RETRYABLE

    def __init__(
        self,
        operation_key: str,
        timeout_seconds: float,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        message = f"Operation '{operation_key}' timed out after {timeout_seconds:g}s"
        super().__init__(message, context, original_error)
        self.operation_key = operation_key
        self.timeout_seconds = timeout_seconds


class TransportError(ResilienceError):
    """Raised by a transport when the exchange fails.

    The classification is derived from ``status_code`` by the error
    classifier, so it is left unset here.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message, {"status_code": status_code}, original_error)
        self.status_code = status_code
        self.body = body


class RequestValidationError(ResilienceError):
    """Raised when a request is rejected before it is sent."""

    classification = ErrorClassification.FATAL


class ResponseError(ResilienceError):
    """Base exception for response-shape anomalies."""


class EmptyResponseError(ResponseError):
    """Raised when a response carries no usable content."""

    classification = ErrorClassification.EMPTY_RESPONSE


class ContentFilteredError(ResponseError):
    """Raised when the remote service filtered the content."""

    classification = ErrorClassification.CONTENT_FILTERED

    def __init__(self, reason: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"Content was filtered: {reason}", context)
        self.reason = reason


class MalformedResponseError(ResponseError):
    """Raised when a response does not have the expected structure."""

    classification = ErrorClassification.RETRYABLE

    def __init__(
        self,
        detail: str,
        snippet: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Malformed response: {detail}", context)
        self.detail = detail
        self.snippet = snippet


class MaxRetriesExceededError(ResilienceError):
    """Raised when every attempt failed with a retryable error."""

    def __init__(
        self,
        operation_name: str,
        max_attempts: int,
        last_error: BaseException | None = None,
        attempts: list[RetryAttempt] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the max retries exceeded error.

        Args:
            operation_name: Name of the operation
            max_attempts: Number of attempts made
            last_error: Last error that occurred
            attempts: Per-attempt records
            context: Additional context information
        """
        message = f"Max retries ({max_attempts}) exceeded for {operation_name}"
        if last_error is not None:
            message = f"{message}. Last error: {last_error}"
        super().__init__(message, context, last_error)
        self.operation_name = operation_name
        self.max_attempts = max_attempts
        self.last_error = last_error
        self.attempts = attempts or []
