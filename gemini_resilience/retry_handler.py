# gemini_resilience/retry_handler.py

"""Retry executor with exponential backoff and jitter."""

import asyncio
from collections.abc import Awaitable, Callable
import logging
import random
import time
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from .error_classifier import ErrorClassifier
from .exceptions import EmptyResponseError, MaxRetriesExceededError
from .models import ErrorClassification, RetryAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JitteredExponentialBackoff(wait_base):
    """Capped exponential backoff with symmetric jitter and a floor.

    ``delay = min(base * 2**attempt, max)``, plus
    ``delay * jitter_ratio * (random() - 0.5)``, floored at ``base``. Jittered
    delays therefore stay within ``[base, max * (1 + jitter_ratio)]``.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter_ratio: float = 0.25,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio
        self._rng = rng

    def unjittered(self, attempt: int) -> float:
        """Base delay for a 0-based attempt index, before jitter."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    def compute(self, attempt: int) -> float:
        """Jittered delay for a 0-based attempt index."""
        delay = self.unjittered(attempt)
        delay += delay * self.jitter_ratio * (self._rng() - 0.5)
        return max(delay, self.base_delay)

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.compute(retry_state.attempt_number - 1)


class stop_at_deadline(stop_base):
    """Stop when the scheduled backoff would overrun the deadline."""

    def __init__(
        self,
        deadline: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.deadline = deadline
        self._clock = clock

    def __call__(self, retry_state: RetryCallState) -> bool:
        # The wait is computed before the stop check runs.
        return self._clock() + retry_state.upcoming_sleep >= self.deadline


def _is_blank(result: Any) -> bool:
    if result is None:
        return True
    if isinstance(result, str):
        return not result.strip()
    if isinstance(result, (bytes, bytearray)):
        return len(result) == 0
    return False


class RetryExecutor:
    """Runs an async callable with classification-driven retries.

    Fatal errors propagate on first occurrence. Retryable errors and
    response-shape anomalies are retried until the attempt budget is spent,
    then surface as MaxRetriesExceededError wrapping the last error. No
    default value is ever substituted here.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter_ratio: float = 0.25,
        error_classifier: ErrorClassifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the retry executor.

        Args:
            max_attempts: Default number of attempts per call
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum unjittered delay in seconds
            jitter_ratio: Jitter scale applied to each delay
            error_classifier: Error classifier for retry decisions
            sleep: Async sleep used between attempts
            rng: Uniform [0, 1) source for jitter
            clock: Monotonic time source in seconds
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = JitteredExponentialBackoff(base_delay, max_delay, jitter_ratio, rng)
        self.error_classifier = error_classifier or ErrorClassifier()
        self._sleep = sleep
        self._clock = clock

        # Statistics
        self._total_calls = 0
        self._total_retries = 0
        self._total_failures = 0
        self._total_successes = 0

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: int | None = None,
        *,
        validate_response: bool = True,
        deadline: float | None = None,
        on_attempt: Callable[[RetryAttempt], None] | None = None,
    ) -> T:
        """Execute an async callable with retry logic.

        Args:
            func: Zero-argument async callable
            operation_name: Name used in logs and errors
            max_attempts: Attempt budget, defaults to the executor's
            validate_response: Treat None / blank results as empty responses
            deadline: Absolute clock time after which no retry is scheduled
            on_attempt: Called with a record after every attempt

        Returns:
            The first successful result

        Raises:
            MaxRetriesExceededError: If every attempt failed with a retryable error
            Exception: The original error if it was classified as non-retryable
        """
        self._total_calls += 1
        attempts_allowed = max_attempts or self.max_attempts
        records: list[RetryAttempt] = []

        stop = stop_after_attempt(attempts_allowed)
        if deadline is not None:
            stop = stop | stop_at_deadline(deadline, self._clock)

        retrying = AsyncRetrying(
            stop=stop,
            wait=self.backoff,
            retry=retry_if_exception(self._should_retry),
            sleep=self._sleep,
            before_sleep=self._before_sleep(operation_name, attempts_allowed),
            reraise=False,
        )

        idle_so_far = 0.0
        try:
            async for attempt in retrying:
                retry_state = attempt.retry_state
                delay_before = retry_state.idle_for - idle_so_far
                idle_so_far = retry_state.idle_for
                with attempt:
                    result = await self._run_attempt(
                        func,
                        operation_name,
                        retry_state.attempt_number - 1,
                        delay_before,
                        validate_response,
                        records,
                        on_attempt,
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            self._total_failures += 1
            logger.error(
                f"All {len(records)} attempts failed for {operation_name}. "
                f"Last error: {last_error}"
            )
            raise MaxRetriesExceededError(
                operation_name, len(records), last_error, records
            ) from last_error
        except Exception:
            self._total_failures += 1
            raise

        self._total_successes += 1
        if len(records) > 1:
            logger.info(f"{operation_name} succeeded after {len(records)} attempts")
        return result

    async def _run_attempt(
        self,
        func: Callable[[], Awaitable[T]],
        operation_name: str,
        index: int,
        delay_before: float,
        validate_response: bool,
        records: list[RetryAttempt],
        on_attempt: Callable[[RetryAttempt], None] | None,
    ) -> T:
        started = self._clock()
        try:
            result = await func()
            if validate_response and _is_blank(result):
                raise EmptyResponseError(f"Empty or invalid response from {operation_name}")
        except Exception as e:
            classification = self.error_classifier.classify(e)
            record = RetryAttempt(
                attempt=index,
                delay_before=delay_before,
                classification=classification,
                error=str(e),
                duration_ms=(self._clock() - started) * 1000,
            )
            records.append(record)
            if on_attempt is not None:
                on_attempt(record)
            if not classification.is_retryable:
                logger.error(
                    f"Non-retryable {classification.value} error in {operation_name}: {e}"
                )
            raise

        record = RetryAttempt(
            attempt=index,
            delay_before=delay_before,
            duration_ms=(self._clock() - started) * 1000,
        )
        records.append(record)
        if on_attempt is not None:
            on_attempt(record)
        return result

    def _should_retry(self, error: BaseException) -> bool:
        # Cancellation and other BaseExceptions always propagate.
        if not isinstance(error, Exception):
            return False
        return self.error_classifier.classify(error).is_retryable

    def _before_sleep(
        self, operation_name: str, attempts_allowed: int
    ) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            self._total_retries += 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            classification = (
                self.error_classifier.classify(error)
                if error is not None
                else ErrorClassification.RETRYABLE
            )
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"Attempt {retry_state.attempt_number}/{attempts_allowed} for "
                f"{operation_name} failed with {classification.value} error: {error}. "
                f"Retrying in {delay:.2f}s..."
            )

        return log_retry

    def get_stats(self) -> dict[str, Any]:
        """Get retry executor statistics."""
        success_rate = (
            self._total_successes / self._total_calls * 100 if self._total_calls > 0 else 0
        )

        return {
            "total_calls": self._total_calls,
            "total_retries": self._total_retries,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "success_rate": success_rate,
            "max_attempts": self.max_attempts,
            "base_delay": self.backoff.base_delay,
            "max_delay": self.backoff.max_delay,
            "jitter_ratio": self.backoff.jitter_ratio,
        }
