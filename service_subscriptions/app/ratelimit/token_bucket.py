"""
Token bucket rate limiter for outbound Patreon requests.
"""

import asyncio
import time
from typing import Callable, Optional

from shared.errors import RateLimitError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class TokenBucketRateLimiter:
    """In-process token bucket.

    The bucket refills continuously at ``requests_per_minute / 60`` tokens per
    second and holds at most ``burst`` tokens (``requests_per_minute`` unless
    given). It starts full, so a burst of ``burst`` requests passes at once;
    after that :meth:`acquire` suspends until a token has refilled.
    """

    def __init__(
        self,
        requests_per_minute: int,
        burst: Optional[int] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")

        self.requests_per_minute = requests_per_minute
        self.burst = burst if burst is not None else requests_per_minute
        self.logger = get_logger("subscriptions.rate_limiter")
        self.metrics = metrics

        self._rate = requests_per_minute / 60.0
        self._clock = clock
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def available_tokens(self) -> float:
        """Tokens currently in the bucket, after refilling."""
        self._refill()
        return self._tokens

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """Take one token, waiting for a refill when the bucket is empty.

        Raises :class:`RateLimitError` when ``timeout`` seconds pass first.
        Cancellation of the calling task propagates unchanged.
        """
        if timeout is None:
            await self._acquire()
            return

        try:
            await asyncio.wait_for(self._acquire(), timeout)
        except asyncio.TimeoutError as exc:
            self.logger.warning("Rate limiter deadline exceeded", timeout=timeout)
            raise RateLimitError(
                "Timed out waiting for a rate limit token",
                details={"timeout": timeout, "requests_per_minute": self.requests_per_minute},
            ) from exc

    async def _acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1.0:
                if self.metrics:
                    self.metrics.record_rate_limit_wait()
                self.logger.debug("Waiting for rate limit token", tokens=round(self._tokens, 3))

            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()

            self._tokens -= 1.0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(float(self.burst), self._tokens + elapsed * self._rate)
        self._last_refill = now
