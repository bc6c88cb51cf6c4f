# gemini_resilience/models.py

"""
Core types shared by the resilience components.

This module provides the enums and lightweight records passed between the
rate limiter, circuit breaker, retry executor and audit sink.
"""

from dataclasses import dataclass, field
from enum import Enum
import time


class CircuitStatus(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Single probe allowed through


class ErrorClassification(str, Enum):
    """Handling categories every error or response anomaly maps to."""

    RETRYABLE = "retryable"
    FATAL = "fatal"
    CIRCUIT_OPEN = "circuit_open"
    RATE_LIMITED = "rate_limited"
    EMPTY_RESPONSE = "empty_response"
    CONTENT_FILTERED = "content_filtered"

    @property
    def is_retryable(self) -> bool:
        """Whether the retry loop may try again after this classification."""
        return self in _RETRYABLE_CLASSIFICATIONS


_RETRYABLE_CLASSIFICATIONS = frozenset(
    {
        ErrorClassification.RETRYABLE,
        ErrorClassification.EMPTY_RESPONSE,
        ErrorClassification.CONTENT_FILTERED,
    }
)


@dataclass(frozen=True)
class RetryAttempt:
    """One invocation inside a single execute call.

    Attributes:
        attempt: Attempt index (0-based)
        delay_before: Seconds slept before this attempt started
        classification: Classification of the error, None on success
        error: String form of the error, None on success
        duration_ms: Wall-clock duration of the attempt
    """

    attempt: int
    delay_before: float = 0.0
    classification: ErrorClassification | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.classification is None


@dataclass(frozen=True)
class AuditEvent:
    """Record handed to an audit sink."""

    operation: str
    attempt: int
    duration_ms: float
    outcome: str
    circuit_state: CircuitStatus | None = None
    details: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation,
            "attempt": self.attempt,
            "duration_ms": round(self.duration_ms, 3),
            "outcome": self.outcome,
            "circuit_state": self.circuit_state.value if self.circuit_state else None,
            "timestamp": self.timestamp,
            **self.details,
        }
