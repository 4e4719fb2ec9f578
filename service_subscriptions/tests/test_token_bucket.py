"""
Unit tests for the Patreon rate limiter.
"""

import asyncio
import time

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_subscriptions.app.ratelimit import TokenBucketRateLimiter
from shared.errors import RateLimitError
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTokenBucketRateLimiter:
    """Test cases for TokenBucketRateLimiter."""

    @pytest.fixture
    def clock(self):
        """Frozen monotonic clock."""
        return FakeClock()

    def test_rejects_non_positive_rate(self):
        """Test that a zero rate is refused."""
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(0)

    def test_starts_full(self, clock):
        """Test that the bucket starts with a full burst."""
        limiter = TokenBucketRateLimiter(60, clock=clock)
        assert limiter.available_tokens == 60

    @pytest.mark.asyncio
    async def test_burst_passes_then_suspends(self, clock):
        """Test that 60 acquisitions pass at once and the 61st waits."""
        limiter = TokenBucketRateLimiter(60, clock=clock)

        for _ in range(60):
            await limiter.acquire(timeout=0.1)

        with pytest.raises(RateLimitError):
            await limiter.acquire(timeout=0.05)

    @pytest.mark.asyncio
    async def test_refill_after_clock_advance(self, clock):
        """Test that elapsed time refills tokens at rpm/60 per second."""
        limiter = TokenBucketRateLimiter(60, clock=clock)
        for _ in range(60):
            await limiter.acquire()

        clock.advance(2.0)
        assert limiter.available_tokens == pytest.approx(2.0)

        await limiter.acquire(timeout=0.1)
        await limiter.acquire(timeout=0.1)
        with pytest.raises(RateLimitError):
            await limiter.acquire(timeout=0.05)

    @pytest.mark.asyncio
    async def test_refill_never_exceeds_burst(self, clock):
        """Test that a long idle period caps the bucket at its burst size."""
        limiter = TokenBucketRateLimiter(60, burst=5, clock=clock)
        clock.advance(3600)
        assert limiter.available_tokens == 5

    @pytest.mark.asyncio
    async def test_waiter_resumes_once_token_refills(self):
        """Test that a waiting caller proceeds after a real refill."""
        limiter = TokenBucketRateLimiter(600, burst=1)
        await limiter.acquire()

        start = time.monotonic()
        await limiter.acquire(timeout=2.0)
        elapsed = time.monotonic() - start

        assert elapsed >= 0.05

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, clock):
        """Test that cancelling a waiting caller raises CancelledError."""
        limiter = TokenBucketRateLimiter(60, burst=1, clock=clock)
        await limiter.acquire()

        task = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_wait_is_recorded(self, clock):
        """Test that a suspended acquisition increments the wait counter."""
        metrics = MetricsCollector("subscriptions-test")
        limiter = TokenBucketRateLimiter(60, burst=1, clock=clock, metrics=metrics)
        await limiter.acquire()

        with pytest.raises(RateLimitError):
            await limiter.acquire(timeout=0.05)

        assert metrics.registry.get_sample_value("rate_limit_waits_total") == 1.0
