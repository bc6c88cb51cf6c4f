# gemini_resilience/rate_limiter.py

"""Per-operation sliding-window rate limiter."""

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any

from .config import RateLimitRule
from .exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass
class _RateWindow:
    """Request timestamps for one operation key, oldest first."""

    rule: RateLimitRule
    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    total_admitted: int = 0
    total_rejected: int = 0


class RateLimiter:
    """Reject-immediately sliding-window limiter partitioned by operation key.

    Each key owns an independent window. Timestamps older than the window are
    pruned lazily whenever the window is inspected. There is no queueing: a
    denied caller must retry the whole call later.
    """

    def __init__(
        self,
        rules: dict[str, RateLimitRule] | None = None,
        default_rule: RateLimitRule | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            rules: Per-operation rules
            default_rule: Rule for keys without an explicit entry
            clock: Monotonic time source in seconds
        """
        self._rules = dict(rules or {})
        self._default_rule = default_rule or RateLimitRule()
        self._clock = clock
        self._windows: dict[str, _RateWindow] = {}
        self._registry_lock = threading.Lock()

    def admit(self, operation_key: str) -> bool:
        """Check whether a request for the key would be admitted now.

        This does not record the request; see ``acquire`` for the atomic
        admit-and-record used by the resilient caller.
        """
        window = self._window(operation_key)
        with window.lock:
            self._prune(window, self._clock())
            allowed = len(window.timestamps) < window.rule.max_requests
        logger.debug(f"Rate limit check for '{operation_key}': admitted={allowed}")
        return allowed

    def record_request(self, operation_key: str) -> None:
        """Record a request timestamp for the key."""
        window = self._window(operation_key)
        with window.lock:
            window.timestamps.append(self._clock())
            window.total_admitted += 1

    def retry_after(self, operation_key: str) -> float:
        """Seconds until the window has room, zero if it has room now."""
        window = self._window(operation_key)
        with window.lock:
            return self._retry_after(window, self._clock())

    def acquire(self, operation_key: str) -> None:
        """Admit and record a request under one lock.

        Raises:
            RateLimitExceededError: If the window is full
        """
        window = self._window(operation_key)
        with window.lock:
            now = self._clock()
            self._prune(window, now)
            if len(window.timestamps) >= window.rule.max_requests:
                window.total_rejected += 1
                retry_after = self._retry_after(window, now)
                logger.info(
                    f"Rate limit exceeded for '{operation_key}': "
                    f"{len(window.timestamps)}/{window.rule.max_requests} "
                    f"in {window.rule.window_seconds:g}s, retry after {retry_after:.2f}s"
                )
                raise RateLimitExceededError(
                    operation_key,
                    window.rule.max_requests,
                    window.rule.window_seconds,
                    retry_after,
                )
            window.timestamps.append(now)
            window.total_admitted += 1

    def reset(self, operation_key: str) -> None:
        """Clear the recorded requests for a key."""
        window = self._window(operation_key)
        with window.lock:
            window.timestamps.clear()
        logger.info(f"Rate limiter for '{operation_key}' reset")

    def reset_all(self) -> None:
        """Clear the recorded requests for every key."""
        with self._registry_lock:
            keys = list(self._windows)
        for key in keys:
            self.reset(key)

    def get_stats(self, operation_key: str) -> dict[str, Any]:
        """Get rate limiter statistics for a key."""
        window = self._window(operation_key)
        with window.lock:
            now = self._clock()
            self._prune(window, now)
            current = len(window.timestamps)
            return {
                "operation": operation_key,
                "current_requests": current,
                "limit": window.rule.max_requests,
                "window_seconds": window.rule.window_seconds,
                "retry_after": self._retry_after(window, now),
                "total_admitted": window.total_admitted,
                "total_rejected": window.total_rejected,
                "utilization_rate": current / window.rule.max_requests * 100,
            }

    def _window(self, operation_key: str) -> _RateWindow:
        with self._registry_lock:
            window = self._windows.get(operation_key)
            if window is None:
                rule = self._rules.get(operation_key, self._default_rule)
                window = _RateWindow(rule=rule)
                self._windows[operation_key] = window
            return window

    @staticmethod
    def _prune(window: _RateWindow, now: float) -> None:
        cutoff = now - window.rule.window_seconds
        while window.timestamps and window.timestamps[0] <= cutoff:
            window.timestamps.popleft()

    def _retry_after(self, window: _RateWindow, now: float) -> float:
        self._prune(window, now)
        if len(window.timestamps) < window.rule.max_requests:
            return 0.0
        # A slot frees once enough of the oldest entries have left the window.
        freeing = window.timestamps[len(window.timestamps) - window.rule.max_requests]
        return max(0.0, freeing + window.rule.window_seconds - now)
