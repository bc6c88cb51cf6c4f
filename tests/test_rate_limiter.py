"""Tests for the sliding-window rate limiter."""

import random
import threading

import pytest

from gemini_resilience.config import RateLimitRule
from gemini_resilience.exceptions import RateLimitExceededError
from gemini_resilience.models import ErrorClassification
from gemini_resilience.rate_limiter import RateLimiter


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        rules={"gemini_text": RateLimitRule(max_requests=10, window_seconds=60.0)},
        default_rule=RateLimitRule(max_requests=2, window_seconds=10.0),
        clock=clock,
    )


class TestAdmission:
    """Tests for admit / record_request / acquire."""

    def test_eleventh_call_in_window_is_denied(self, limiter):
        """Should deny the 11th gemini_text request inside one minute."""
        for _ in range(10):
            limiter.acquire("gemini_text")

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.acquire("gemini_text")

        assert exc_info.value.retry_after > 0
        assert exc_info.value.classification == ErrorClassification.RATE_LIMITED
        assert exc_info.value.limit == 10

    def test_admit_does_not_record(self, limiter):
        """Should leave the window untouched when only checking admission."""
        for _ in range(5):
            assert limiter.admit("other") is True

        assert limiter.get_stats("other")["current_requests"] == 0

    def test_admit_then_record(self, limiter):
        """Should deny once recorded requests fill the window."""
        limiter.record_request("other")
        limiter.record_request("other")

        assert limiter.admit("other") is False

    def test_keys_are_independent(self, limiter):
        """Should keep a full window on one key from affecting another."""
        limiter.acquire("other")
        limiter.acquire("other")

        assert limiter.admit("other") is False
        assert limiter.admit("gemini_text") is True

    def test_unknown_key_uses_default_rule(self, limiter):
        """Should apply the default rule to unconfigured keys."""
        stats = limiter.get_stats("unconfigured")

        assert stats["limit"] == 2
        assert stats["window_seconds"] == 10.0


class TestRetryAfter:
    """Tests for retry-after computation."""

    def test_zero_when_window_has_room(self, limiter):
        """Should report no wait while the window has room."""
        limiter.acquire("other")

        assert limiter.retry_after("other") == 0.0

    def test_time_until_oldest_leaves(self, limiter, clock):
        """Should report the time until the oldest entry exits the window."""
        limiter.acquire("other")
        clock.advance(3.0)
        limiter.acquire("other")
        clock.advance(2.0)

        assert limiter.retry_after("other") == pytest.approx(5.0)

    def test_admits_again_once_window_slides(self, limiter, clock):
        """Should admit as soon as retry_after has elapsed."""
        limiter.acquire("other")
        limiter.acquire("other")
        wait = limiter.retry_after("other")

        clock.advance(wait)

        assert limiter.admit("other") is True
        limiter.acquire("other")


class TestWindowInvariant:
    """Property-style checks over simulated traffic."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 1234])
    def test_never_more_than_max_in_any_window(self, clock, seed):
        """Should never admit more than max_requests within any window."""
        rule = RateLimitRule(max_requests=4, window_seconds=10.0)
        limiter = RateLimiter(default_rule=rule, clock=clock)
        rng = random.Random(seed)
        admitted: list[float] = []

        for _ in range(500):
            clock.advance(rng.uniform(0.0, 3.0))
            try:
                limiter.acquire("key")
            except RateLimitExceededError as e:
                assert e.retry_after > 0
            else:
                admitted.append(clock())

            in_window = [t for t in admitted if t > clock() - rule.window_seconds]
            assert len(in_window) <= rule.max_requests

        assert admitted

    def test_concurrent_acquire_loses_no_entries(self, clock):
        """Should admit exactly max_requests across racing threads."""
        limiter = RateLimiter(default_rule=RateLimitRule(max_requests=100), clock=clock)
        admitted = []
        rejected = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                try:
                    limiter.acquire("shared")
                except RateLimitExceededError:
                    with lock:
                        rejected.append(1)
                else:
                    with lock:
                        admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 100
        assert len(rejected) == 100
        stats = limiter.get_stats("shared")
        assert stats["current_requests"] == 100
        assert stats["total_rejected"] == 100


class TestReset:
    """Tests for reset and statistics."""

    def test_reset_clears_window(self, limiter):
        """Should admit immediately after a reset."""
        limiter.acquire("other")
        limiter.acquire("other")

        limiter.reset("other")

        assert limiter.admit("other") is True

    def test_reset_all(self, limiter):
        """Should clear every known window."""
        limiter.acquire("other")
        limiter.acquire("gemini_text")

        limiter.reset_all()

        assert limiter.get_stats("other")["current_requests"] == 0
        assert limiter.get_stats("gemini_text")["current_requests"] == 0

    def test_stats(self, limiter):
        """Should report utilization of the current window."""
        for _ in range(5):
            limiter.acquire("gemini_text")

        stats = limiter.get_stats("gemini_text")

        assert stats["current_requests"] == 5
        assert stats["total_admitted"] == 5
        assert stats["utilization_rate"] == 50.0
