# gemini_resilience/circuit_breaker.py

"""
Circuit breaker for operation resilience.

This module provides a circuit breaker registry partitioned by operation key.
Each key has an independent CLOSED / OPEN / HALF_OPEN state machine; the
only legal transitions are CLOSED->OPEN, OPEN->HALF_OPEN, HALF_OPEN->CLOSED
and HALF_OPEN->OPEN.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
import math
import threading
import time
from typing import Any, TypeVar

from .exceptions import CallTimeoutError, CircuitOpenError
from .models import CircuitStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateChangeListener = Callable[[str, CircuitStatus, CircuitStatus], None]


@dataclass
class CircuitState:
    """State information for one operation key."""

    status: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    last_failure_time: float | None = None
    probe_in_flight: bool = False
    opened_count: int = 0
    total_calls: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CircuitBreaker:
    """Circuit breaker pattern partitioned by operation key."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 900.0,
        call_timeout: float | None = 30.0,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateChangeListener | None = None,
    ) -> None:
        """Initialize the circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening a circuit
            reset_timeout: Seconds an open circuit waits before allowing a probe
            call_timeout: Default wall-clock timeout for a guarded call
            clock: Monotonic time source in seconds
            on_state_change: Called with (key, old, new) on every transition
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.call_timeout = call_timeout
        self._clock = clock
        self._listeners: list[StateChangeListener] = []
        if on_state_change is not None:
            self._listeners.append(on_state_change)
        self._states: dict[str, CircuitState] = {}
        self._registry_lock = threading.Lock()

    async def execute(
        self,
        operation_key: str,
        func: Callable[[], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """Execute an async callable with circuit breaker protection.

        Args:
            operation_key: Partition key for breaker state
            func: Zero-argument async callable
            timeout: Wall-clock timeout, defaults to ``call_timeout``.
                ``math.inf`` disables it.

        Returns:
            The callable's result

        Raises:
            CircuitOpenError: If the circuit is open or a probe is in flight
            CallTimeoutError: If the call exceeded its timeout
            Exception: Original exception from the callable
        """
        state = self._get_state(operation_key)
        with state.lock:
            self._before_call(operation_key, state)

        effective_timeout = self.call_timeout if timeout is None else timeout
        try:
            result = await self._run_with_timeout(operation_key, func, effective_timeout)
        except asyncio.CancelledError:
            with state.lock:
                state.probe_in_flight = False
            raise
        except Exception:
            with state.lock:
                self._on_failure(operation_key, state)
            raise

        with state.lock:
            self._on_success(operation_key, state)
        return result

    def with_call_timeout(
        self, operation_key: str, func: Callable[[], Awaitable[T]]
    ) -> Callable[[], Awaitable[T]]:
        """Wrap a callable with this breaker's per-call timeout only.

        No breaker bookkeeping happens here; it bounds individual attempts
        while ``execute`` guards the whole sequence.
        """

        async def timed() -> T:
            return await self._run_with_timeout(operation_key, func, self.call_timeout)

        return timed

    @staticmethod
    async def _run_with_timeout(
        operation_key: str,
        func: Callable[[], Awaitable[T]],
        timeout: float | None,
    ) -> T:
        if timeout is None or math.isinf(timeout):
            return await func()
        try:
            return await asyncio.wait_for(func(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CallTimeoutError(operation_key, timeout, original_error=e) from e

    def _before_call(self, operation_key: str, state: CircuitState) -> None:
        state.total_calls += 1

        if state.status == CircuitStatus.OPEN:
            elapsed = self._elapsed_since_failure(state)
            if elapsed >= self.reset_timeout:
                self._transition(operation_key, state, CircuitStatus.HALF_OPEN)
                state.probe_in_flight = True
                logger.info(f"Circuit breaker '{operation_key}' allowing a probe call")
                return
            state.total_rejections += 1
            raise CircuitOpenError(
                operation_key,
                state.failure_count,
                self.failure_threshold,
                retry_after=self.reset_timeout - elapsed,
            )

        if state.status == CircuitStatus.HALF_OPEN:
            if state.probe_in_flight:
                state.total_rejections += 1
                raise CircuitOpenError(
                    operation_key,
                    state.failure_count,
                    self.failure_threshold,
                    context={"reason": "probe in flight"},
                )
            state.probe_in_flight = True

    def _on_success(self, operation_key: str, state: CircuitState) -> None:
        state.total_successes += 1
        if state.status == CircuitStatus.OPEN:
            # Straggler admitted before the circuit opened; the open timer stands.
            return
        state.failure_count = 0
        state.probe_in_flight = False
        if state.status == CircuitStatus.HALF_OPEN:
            self._transition(operation_key, state, CircuitStatus.CLOSED)
            logger.info(f"Circuit breaker '{operation_key}' closed - service recovered")

    def _on_failure(self, operation_key: str, state: CircuitState) -> None:
        state.total_failures += 1
        if state.status == CircuitStatus.OPEN:
            return

        state.failure_count += 1
        state.last_failure_time = self._clock()

        if state.status == CircuitStatus.HALF_OPEN:
            state.probe_in_flight = False
            self._open(operation_key, state, reason="probe failed")
        elif state.failure_count >= self.failure_threshold:
            self._open(operation_key, state, reason="failure threshold reached")
        else:
            logger.debug(
                f"Circuit breaker '{operation_key}' failure count: "
                f"{state.failure_count}/{self.failure_threshold}"
            )

    def _open(self, operation_key: str, state: CircuitState, reason: str) -> None:
        state.opened_count += 1
        self._transition(operation_key, state, CircuitStatus.OPEN)
        logger.warning(
            f"Circuit breaker '{operation_key}' opened after {state.failure_count} "
            f"failures ({reason}); next probe in {self.reset_timeout:g}s"
        )

    def _transition(
        self, operation_key: str, state: CircuitState, new_status: CircuitStatus
    ) -> None:
        old_status = state.status
        state.status = new_status
        for listener in self._listeners:
            try:
                listener(operation_key, old_status, new_status)
            except Exception as e:
                logger.warning(
                    f"Circuit breaker state listener failed for '{operation_key}': {e}"
                )

    def _elapsed_since_failure(self, state: CircuitState) -> float:
        if state.last_failure_time is None:
            return math.inf
        return self._clock() - state.last_failure_time

    def _get_state(self, operation_key: str) -> CircuitState:
        with self._registry_lock:
            state = self._states.get(operation_key)
            if state is None:
                state = CircuitState()
                self._states[operation_key] = state
            return state

    def add_listener(self, listener: StateChangeListener) -> None:
        """Register a state change listener."""
        self._listeners.append(listener)

    def state(self, operation_key: str) -> CircuitStatus:
        """Get current circuit state for an operation key."""
        return self._get_state(operation_key).status

    def failure_count(self, operation_key: str) -> int:
        """Get current failure count for an operation key."""
        return self._get_state(operation_key).failure_count

    def time_until_reset(self, operation_key: str) -> float:
        """Seconds until an open circuit allows a probe, zero otherwise."""
        state = self._get_state(operation_key)
        with state.lock:
            if state.status != CircuitStatus.OPEN:
                return 0.0
            return max(0.0, self.reset_timeout - self._elapsed_since_failure(state))

    def reset(self, operation_key: str) -> None:
        """Manually force a circuit closed and clear its counters."""
        state = self._get_state(operation_key)
        with state.lock:
            state.failure_count = 0
            state.last_failure_time = None
            state.probe_in_flight = False
            self._transition(operation_key, state, CircuitStatus.CLOSED)
        logger.info(f"Circuit breaker '{operation_key}' manually reset")

    def reset_all(self) -> None:
        """Reset every known circuit."""
        with self._registry_lock:
            keys = list(self._states)
        for key in keys:
            self.reset(key)
        logger.info("All circuit breakers reset")

    def get_stats(self, operation_key: str) -> dict[str, Any]:
        """Get circuit breaker statistics for an operation key."""
        state = self._get_state(operation_key)
        with state.lock:
            return {
                "operation": operation_key,
                "state": state.status.value,
                "failure_count": state.failure_count,
                "failure_threshold": self.failure_threshold,
                "reset_timeout": self.reset_timeout,
                "probe_in_flight": state.probe_in_flight,
                "opened_count": state.opened_count,
                "total_calls": state.total_calls,
                "total_successes": state.total_successes,
                "total_failures": state.total_failures,
                "total_rejections": state.total_rejections,
                "is_healthy": state.status == CircuitStatus.CLOSED,
            }

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        """Get statistics for all circuits."""
        with self._registry_lock:
            keys = list(self._states)
        return {key: self.get_stats(key) for key in keys}
