"""
Subscriptions service: keeps a Patreon membership snapshot fresh and answers
Discord lookup interactions against it.
"""

import asyncio
import os
import signal
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import Depends, Request

from shared.base_service import BaseService
from shared.config import SubscriptionsConfig
from shared.errors import TokenExpiredError

from .auth import Ed25519SignatureVerifier
from .cache import SnapshotCache
from .interactions import InteractionHandler, LookupResponseFormatter
from .patreon import PatreonClient, TierCatalog, TokenManager, TokenStore, create_http_client
from .poller import PollScheduler, SnapshotConsumer
from .ratelimit import TokenBucketRateLimiter


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


class SubscriptionsService(BaseService):
    """Subscriptions service implementation."""

    def __init__(
        self,
        config: Optional[SubscriptionsConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        halt: Optional[Callable[[], None]] = None,
    ):
        super().__init__("subscriptions", config)

        self.tiers = TierCatalog(self.config.tiers)
        self.rate_limiter = TokenBucketRateLimiter(
            self.config.patreon_requests_per_minute,
            metrics=self.metrics,
        )
        self.http_client = http_client or create_http_client(self.config.refresh_timeout_seconds)
        self.token_store = TokenStore(self.config.patreon_tokens_file_path)
        self.token_manager = TokenManager(
            self.config.patreon_client_id,
            self.config.patreon_client_secret,
            token_url=self.config.patreon_token_url,
            http_client=self.http_client,
            rate_limiter=self.rate_limiter,
            store=self.token_store,
            refresh_horizon=timedelta(seconds=self.config.refresh_horizon_seconds),
            refresh_timeout=self.config.refresh_timeout_seconds,
            metrics=self.metrics,
        )
        self.patreon_client = PatreonClient(
            self.config.patreon_campaign_id,
            http_client=self.http_client,
            rate_limiter=self.rate_limiter,
            tiers=self.tiers,
            api_base_url=self.config.patreon_api_base_url,
            page_timeout=self.config.page_timeout_seconds,
        )

        self.cache = SnapshotCache(metrics=self.metrics)
        self.snapshot_queue: "asyncio.Queue" = asyncio.Queue(maxsize=1)
        self.poller = PollScheduler(
            self.token_manager,
            self.patreon_client,
            self.snapshot_queue,
            interval=self.config.poll_interval_seconds,
            cycle_timeout=self.config.cycle_timeout_seconds,
            grant_retry_delay=self.config.grant_retry_seconds,
            metrics=self.metrics,
        )
        self.consumer = SnapshotConsumer(self.snapshot_queue, self.cache)

        self.verifier = Ed25519SignatureVerifier(self.config.discord_public_key)
        self.interaction_handler = InteractionHandler(
            self.cache,
            LookupResponseFormatter(self.tiers),
            self.config.discord_allowed_guilds,
            metrics=self.metrics,
        )

        self._halt = halt or _terminate_process
        self._tasks: List[asyncio.Task] = []
        self.exit_code = 0

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_subscriptions_routes()

    def _setup_subscriptions_routes(self):
        """Set up subscriptions-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "subscriptions",
                "message": "Subscriptions App - Patreon membership lookups",
                "version": "1.0.0",
                "capabilities": ["patreon_sync", "discord_interactions"]
            }

        @self.app.post("/interaction")
        async def interaction(request: Request, _verified: bytes = Depends(self.verifier.authenticate)):
            """Discord interaction endpoint; the body is verified before dispatch."""
            body = await request.body()
            return self.interaction_handler.handle(body)

    async def start(self):
        """Load stored credentials and start the poll and consumer tasks."""
        credentials = self.token_store.load()
        if credentials is not None:
            self.token_manager.seed(credentials)

        consumer_task = asyncio.create_task(self.consumer.run(), name="snapshot-consumer")
        poller_task = asyncio.create_task(self.poller.run_forever(), name="patreon-poller")
        self._tasks = [consumer_task, poller_task]
        for task in self._tasks:
            task.add_done_callback(self._on_task_done)

        self.logger.info(
            "Subscriptions service components started",
            cold_start=credentials is None,
            campaign_id=self.config.patreon_campaign_id,
        )

    async def stop(self):
        """Stop background tasks and release the HTTP client."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.http_client.aclose()
        self.logger.info("Subscriptions service components stopped")

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Stop the service when a background task ends other than by cancellation."""
        if task.cancelled():
            return

        exc = task.exception()
        if isinstance(exc, TokenExpiredError):
            self.logger.critical("Patreon credentials expired, stopping service", error=exc.message)
        elif exc is not None:
            self.logger.critical("Background task crashed, stopping service", task=task.get_name(), error=str(exc), exc_info=exc)
        else:
            self.logger.critical("Background task exited, stopping service", task=task.get_name())

        self.exit_code = 1
        self._halt()

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report snapshot and credential state."""
        credentials = self.token_manager.credentials
        if credentials is None:
            credential_state = "missing"
        elif credentials.is_expired():
            credential_state = "expired"
        else:
            credential_state = "ok"

        loaded_at = self.cache.loaded_at
        return {
            "snapshot": "ready" if self.cache.is_ready else "not_ready",
            "patrons": self.cache.size,
            "snapshot_loaded_at": loaded_at.isoformat() if loaded_at else None,
            "credentials": credential_state,
            "last_poll_error": self.poller.last_error,
        }


def create_app():
    """Create FastAPI application."""
    service = SubscriptionsService()
    return service.app


if __name__ == "__main__":
    service = SubscriptionsService()
    service.run()
    raise SystemExit(service.exit_code)
