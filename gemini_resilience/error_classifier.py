# gemini_resilience/error_classifier.py

"""Error classification for retry decisions."""

import asyncio
import logging
import re
from typing import Any

import httpx

from .exceptions import ResilienceError
from .models import ErrorClassification

logger = logging.getLogger(__name__)

_STATUS_CODE_PATTERNS = [
    re.compile(r"(\d{3})\s+(?:Client|Server)\s+Error"),
    re.compile(r"HTTP\s+(\d{3})"),
    re.compile(r"[Ss]tatus(?:\s+code)?[\s:=]+(\d{3})"),
    re.compile(r"\((\d{3})\)"),
]


class ErrorClassifier:
    """Maps an error to exactly one ErrorClassification.

    Structured signals are checked first (declared classification, HTTP
    status code, exception type). Lowercase substring matching is only a
    fallback for opaque error sources.
    """

    def __init__(self) -> None:
        """Initialize the error classifier with default patterns."""
        self._retryable_patterns: list[str] = [
            "timeout",
            "timed out",
            "network",
            "connection",
            "429",
            "500",
            "502",
            "503",
            "504",
            "unhandled format for content",
            "role: model",
            "empty response",
            "resource-exhausted",
            "resource_exhausted",
            "deadline-exceeded",
            "deadline exceeded",
            "unavailable",
            "internal error",
            "internal server error",
        ]
        self._fatal_patterns: list[str] = [
            "400",
            "401",
            "403",
            "bad request",
            "unauthorized",
            "forbidden",
            "invalid api key",
            "permission denied",
        ]

        # HTTP status code mappings
        self._status_code_mappings: dict[int, ErrorClassification] = {
            400: ErrorClassification.FATAL,
            401: ErrorClassification.FATAL,
            403: ErrorClassification.FATAL,
            404: ErrorClassification.FATAL,
            408: ErrorClassification.RETRYABLE,
            422: ErrorClassification.FATAL,
            429: ErrorClassification.RETRYABLE,
            500: ErrorClassification.RETRYABLE,
            502: ErrorClassification.RETRYABLE,
            503: ErrorClassification.RETRYABLE,
            504: ErrorClassification.RETRYABLE,
        }

        # Exception type mappings, checked in order
        self._exception_mappings: list[tuple[type[BaseException], ErrorClassification]] = [
            (asyncio.TimeoutError, ErrorClassification.RETRYABLE),
            (TimeoutError, ErrorClassification.RETRYABLE),
            (ConnectionError, ErrorClassification.RETRYABLE),
            (httpx.TimeoutException, ErrorClassification.RETRYABLE),
            (httpx.TransportError, ErrorClassification.RETRYABLE),
        ]

    def classify(
        self, error: BaseException, status_code: int | None = None
    ) -> ErrorClassification:
        """Classify an error.

        Args:
            error: The exception that occurred
            status_code: HTTP status code if the caller already knows it

        Returns:
            The classification for the error. Unknown errors are FATAL.
        """
        if isinstance(error, ResilienceError) and error.classification is not None:
            return error.classification

        status = status_code if status_code is not None else self._status_of(error)
        if status is not None:
            category = self._classify_status(status)
            if category is not None:
                logger.debug(f"Classified error by status code {status}: {category}")
                return category

        for exc_type, category in self._exception_mappings:
            if isinstance(error, exc_type):
                logger.debug(
                    f"Classified error by exception type {type(error).__name__}: {category}"
                )
                return category

        return self.classify_message(str(error))

    def classify_message(self, message: str) -> ErrorClassification:
        """Classify an opaque error string."""
        extracted = self._extract_status_code_from_message(message)
        if extracted is not None:
            category = self._classify_status(extracted)
            if category is not None:
                logger.debug(
                    f"Classified error by extracted status code {extracted}: {category}"
                )
                return category

        lowered = message.lower()
        for pattern in self._retryable_patterns:
            if pattern in lowered:
                logger.debug(f"Classified error by message pattern '{pattern}': retryable")
                return ErrorClassification.RETRYABLE
        for pattern in self._fatal_patterns:
            if pattern in lowered:
                logger.debug(f"Classified error by message pattern '{pattern}': fatal")
                return ErrorClassification.FATAL

        logger.debug("Using default classification: FATAL")
        return ErrorClassification.FATAL

    def is_retryable(self, error: BaseException) -> bool:
        """Check if an error should be retried."""
        return self.classify(error).is_retryable

    def _classify_status(self, status: int) -> ErrorClassification | None:
        category = self._status_code_mappings.get(status)
        if category is not None:
            return category
        if 500 <= status < 600:
            return ErrorClassification.RETRYABLE
        if 400 <= status < 500:
            return ErrorClassification.FATAL
        return None

    @staticmethod
    def _status_of(error: BaseException) -> int | None:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code
        status = getattr(error, "status_code", None)
        if isinstance(status, int):
            return status
        return None

    @staticmethod
    def _extract_status_code_from_message(message: str) -> int | None:
        """Extract an HTTP status code from an error message.

        Args:
            message: Error message to extract status code from

        Returns:
            Status code if found, None otherwise
        """
        for pattern in _STATUS_CODE_PATTERNS:
            match = pattern.search(message)
            if match:
                return int(match.group(1))
        return None

    def add_pattern(self, classification: ErrorClassification, pattern: str) -> None:
        """Add a custom message pattern.

        Args:
            classification: RETRYABLE or FATAL
            pattern: Substring to match in lowercased error messages
        """
        if classification == ErrorClassification.RETRYABLE:
            self._retryable_patterns.append(pattern.lower())
        elif classification == ErrorClassification.FATAL:
            self._fatal_patterns.append(pattern.lower())
        else:
            raise ValueError(f"Patterns can only map to retryable or fatal, got {classification}")
        logger.info(f"Added error pattern '{pattern}' for {classification}")

    def add_status_code_mapping(
        self, status_code: int, classification: ErrorClassification
    ) -> None:
        """Add a custom status code mapping."""
        self._status_code_mappings[status_code] = classification
        logger.info(f"Added status code mapping {status_code} -> {classification}")

    def get_classification_stats(self) -> dict[str, Any]:
        """Get statistics about the configured classification rules."""
        return {
            "retryable_patterns": len(self._retryable_patterns),
            "fatal_patterns": len(self._fatal_patterns),
            "status_code_mappings": len(self._status_code_mappings),
            "exception_mappings": len(self._exception_mappings),
        }
