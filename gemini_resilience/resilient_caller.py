# gemini_resilience/resilient_caller.py

"""Composition root wiring rate limiting, circuit breaking and retries."""

import asyncio
from collections.abc import Awaitable, Callable
import logging
import math
import time
from typing import Any, TypeVar

from .audit import AuditSink, StructlogAuditSink, safe_record
from .circuit_breaker import CircuitBreaker
from .config import ResilienceSettings
from .error_classifier import ErrorClassifier
from .exceptions import (
    CallTimeoutError,
    CircuitOpenError,
    MaxRetriesExceededError,
    RateLimitExceededError,
)
from .models import AuditEvent, RetryAttempt
from .rate_limiter import RateLimiter
from .retry_handler import RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientCaller:
    """Single entry point for resilient remote calls.

    Pipeline per call: RateLimiter.acquire -> CircuitBreaker.execute(retry
    sequence) -> RetryExecutor around each attempt, each attempt bounded by the
    breaker's call timeout. The breaker sees only the final outcome of the
    whole retry sequence, so recovered transient failures never count against
    it.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        circuit_breaker: CircuitBreaker,
        retry_executor: RetryExecutor,
        audit_sink: AuditSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.retry_executor = retry_executor
        self.audit_sink = audit_sink
        self._clock = clock

    async def execute(
        self,
        operation_key: str,
        func: Callable[[], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        validate_response: bool = True,
        deadline: float | None = None,
    ) -> T:
        """Execute an async callable under the full resilience pipeline.

        Args:
            operation_key: Partition key for rate limit and breaker state
            func: Zero-argument async callable performing one attempt
            max_attempts: Attempt budget, defaults to the retry executor's
            validate_response: Treat None / blank results as empty responses
            deadline: Overall budget in seconds for the whole call

        Returns:
            The first successful result

        Raises:
            RateLimitExceededError: Admission denied, carries retry_after
            CircuitOpenError: Breaker is open, the callable was not invoked
            MaxRetriesExceededError: Retryable failures exhausted the budget
            CallTimeoutError: The overall deadline elapsed
            Exception: The original error when it was classified as fatal
        """
        started = self._clock()

        try:
            self.rate_limiter.acquire(operation_key)
        except RateLimitExceededError:
            self._audit(operation_key, 0, started, "rate_limited")
            raise

        attempts: list[RetryAttempt] = []
        absolute_deadline = started + deadline if deadline is not None else None
        timed = self.circuit_breaker.with_call_timeout(operation_key, func)

        def on_attempt(record: RetryAttempt) -> None:
            attempts.append(record)
            outcome = (
                "attempt_succeeded"
                if record.succeeded
                else f"attempt_{record.classification.value}"
            )
            safe_record(
                self.audit_sink,
                AuditEvent(
                    operation=operation_key,
                    attempt=record.attempt,
                    duration_ms=record.duration_ms,
                    outcome=outcome,
                    circuit_state=self.circuit_breaker.state(operation_key),
                ),
            )

        async def retry_sequence() -> T:
            return await self.retry_executor.execute_with_retry(
                timed,
                operation_key,
                max_attempts,
                validate_response=validate_response,
                deadline=absolute_deadline,
                on_attempt=on_attempt,
            )

        try:
            result = await self.circuit_breaker.execute(
                operation_key,
                retry_sequence,
                timeout=deadline if deadline is not None else math.inf,
            )
        except asyncio.CancelledError:
            logger.info(f"Call to {operation_key} cancelled after {len(attempts)} attempts")
            self._audit(operation_key, len(attempts), started, "cancelled")
            raise
        except Exception as e:
            self._audit(operation_key, len(attempts), started, self._terminal_outcome(e))
            raise

        self._audit(operation_key, len(attempts), started, "success")
        return result

    def _terminal_outcome(self, error: Exception) -> str:
        if isinstance(error, CircuitOpenError):
            return "circuit_open"
        if isinstance(error, MaxRetriesExceededError):
            return "max_retries_exceeded"
        if isinstance(error, CallTimeoutError):
            return "timeout"
        return self.retry_executor.error_classifier.classify(error).value

    def _audit(self, operation_key: str, attempts: int, started: float, outcome: str) -> None:
        safe_record(
            self.audit_sink,
            AuditEvent(
                operation=operation_key,
                attempt=attempts,
                duration_ms=(self._clock() - started) * 1000,
                outcome=outcome,
                circuit_state=self.circuit_breaker.state(operation_key),
            ),
        )

    def reset(self, operation_key: str) -> None:
        """Reset breaker and rate window for an operation key."""
        self.circuit_breaker.reset(operation_key)
        self.rate_limiter.reset(operation_key)

    def get_stats(self, operation_key: str) -> dict[str, Any]:
        """Get combined statistics for an operation key."""
        return {
            "operation": operation_key,
            "circuit_breaker": self.circuit_breaker.get_stats(operation_key),
            "rate_limiter": self.rate_limiter.get_stats(operation_key),
            "retry_executor": self.retry_executor.get_stats(),
        }


def build_resilient_caller(
    settings: ResilienceSettings | None = None,
    audit_sink: AuditSink | None = None,
    error_classifier: ErrorClassifier | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ResilientCaller:
    """Build a caller from settings. Construct once and share it."""
    settings = settings or ResilienceSettings()
    classifier = error_classifier or ErrorClassifier()

    rate_limiter = RateLimiter(
        rules=settings.rate_limits,
        default_rule=settings.default_rate_limit,
        clock=clock,
    )
    circuit_breaker = CircuitBreaker(
        failure_threshold=settings.circuit_failure_threshold,
        reset_timeout=settings.circuit_reset_timeout,
        call_timeout=settings.request_timeout,
        clock=clock,
    )
    retry_executor = RetryExecutor(
        max_attempts=settings.max_retries,
        base_delay=settings.base_delay,
        max_delay=settings.max_delay,
        jitter_ratio=settings.jitter_ratio,
        error_classifier=classifier,
        sleep=sleep,
        clock=clock,
    )

    logger.info(
        f"ResilientCaller initialized: max_retries={settings.max_retries}, "
        f"base_delay={settings.base_delay}s, max_delay={settings.max_delay}s, "
        f"circuit_threshold={settings.circuit_failure_threshold}, "
        f"circuit_reset={settings.circuit_reset_timeout}s"
    )
    return ResilientCaller(
        rate_limiter,
        circuit_breaker,
        retry_executor,
        audit_sink=audit_sink if audit_sink is not None else StructlogAuditSink(),
        clock=clock,
    )
