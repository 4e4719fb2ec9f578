"""
Poll scheduler driving the refresh -> fetch -> publish cycle.
"""

import asyncio
import time
from typing import Optional

from shared.errors import TokenExpiredError
from shared.logging import get_logger, bind_cycle_id, reset_cycle_id
from shared.metrics import MetricsCollector

from .cache import SnapshotCache
from .patreon import PatreonClient, Snapshot, TokenManager


class PollScheduler:
    """Keeps the snapshot fresh by polling Patreon on a fixed cadence.

    Snapshots are handed to the consumer through ``queue`` (one slot). Cycle
    failures are logged and retried on the next tick; only an expired refresh
    token ends :meth:`run_forever`.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        client: PatreonClient,
        queue: "asyncio.Queue[Snapshot]",
        *,
        interval: float = 60.0,
        cycle_timeout: float = 3600.0,
        grant_retry_delay: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.token_manager = token_manager
        self.client = client
        self.queue = queue
        self.interval = interval
        self.cycle_timeout = cycle_timeout
        self.grant_retry_delay = grant_retry_delay
        self.metrics = metrics
        self.logger = get_logger("subscriptions.poller")

        self.cycles_completed = 0
        self.last_error: Optional[str] = None

    async def bootstrap(self) -> None:
        """Grant credentials on cold start, retrying until it succeeds."""
        if self.token_manager.has_credentials:
            return

        attempt = 0
        while True:
            attempt += 1
            try:
                await asyncio.wait_for(self.token_manager.grant(), self.token_manager.refresh_timeout)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(
                    "Failed to grant credentials, retrying",
                    attempt=attempt,
                    retry_in=self.grant_retry_delay,
                    error=str(e) or type(e).__name__,
                )
            await asyncio.sleep(self.grant_retry_delay)

    async def run_cycle(self) -> bool:
        """Run one cycle; returns whether a snapshot was published.

        :class:`TokenExpiredError` propagates, every other failure is logged.
        """
        cycle_token = bind_cycle_id()
        start = time.monotonic()
        try:
            snapshot = await self._refresh_and_fetch()
        except TokenExpiredError:
            self._record("fatal", start)
            raise
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self.last_error = f"cycle exceeded {self.cycle_timeout}s deadline"
            self.logger.error("Failed to fetch pledges", error=self.last_error)
            self._record("timeout", start)
            return False
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            self.logger.error("Failed to fetch pledges", error=self.last_error, error_type=type(e).__name__)
            self._record("failure", start)
            return False
        finally:
            reset_cycle_id(cycle_token)

        await self.queue.put(snapshot)
        self.cycles_completed += 1
        self.last_error = None
        self._record("success", start)
        return True

    async def run_forever(self) -> None:
        """Bootstrap credentials, then cycle until cancelled or fatally expired."""
        await self.bootstrap()

        while True:
            try:
                await self.run_cycle()
            except TokenExpiredError as e:
                self.logger.critical(
                    "Refresh token has already expired, halting",
                    expires_at=str(e.expires_at),
                )
                raise
            await asyncio.sleep(self.interval)

    async def _refresh_and_fetch(self) -> Snapshot:
        # Expiry is checked before the deadline starts so it is never masked by a timeout.
        if self.token_manager.is_expired():
            credentials = self.token_manager.credentials
            raise TokenExpiredError(credentials.expires_at.isoformat() if credentials else None)

        return await asyncio.wait_for(self._cycle_body(), self.cycle_timeout)

    async def _cycle_body(self) -> Snapshot:
        await self.token_manager.ensure_fresh()
        return await self.client.fetch_pledges(self.token_manager.credentials)

    def _record(self, outcome: str, start: float) -> None:
        if self.metrics:
            self.metrics.record_poll_cycle(outcome, time.monotonic() - start)


class SnapshotConsumer:
    """Drains the handoff queue into the snapshot cache."""

    def __init__(self, queue: "asyncio.Queue[Snapshot]", cache: SnapshotCache):
        self.queue = queue
        self.cache = cache

    async def run(self) -> None:
        while True:
            snapshot = await self.queue.get()
            try:
                self.cache.swap(snapshot)
            finally:
                self.queue.task_done()
