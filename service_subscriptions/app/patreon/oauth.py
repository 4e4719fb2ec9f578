"""
OAuth2 token lifecycle for the Patreon API.

Credentials are granted once on cold start, refreshed proactively when they
get within the refresh horizon of their expiry, and persisted after every
successful exchange. Expiry itself is fatal: once ``expires_at`` has passed the
refresh token is dead and only an operator can issue a new one.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.errors import TokenExpiredError, TokenRequestError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..ratelimit import TokenBucketRateLimiter
from .client import USER_AGENT
from .models import Credentials, TokenResponse, utcnow
from .token_store import TokenStore

DEFAULT_REFRESH_HORIZON = timedelta(days=3)


class TokenManager:
    """Owns the Patreon credentials used by the poll cycle.

    Only the poll flow calls into this object, so the credentials are swapped
    without locking.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str,
        http_client: httpx.AsyncClient,
        rate_limiter: TokenBucketRateLimiter,
        store: Optional[TokenStore] = None,
        credentials: Optional[Credentials] = None,
        refresh_horizon: timedelta = DEFAULT_REFRESH_HORIZON,
        refresh_timeout: float = 30.0,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.refresh_horizon = refresh_horizon
        self.refresh_timeout = refresh_timeout
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("subscriptions.oauth")

        self._http = http_client
        self._rate_limiter = rate_limiter
        self._credentials = credentials
        self._clock = clock

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @property
    def has_credentials(self) -> bool:
        return self._credentials is not None

    def seed(self, credentials: Credentials) -> None:
        """Install previously persisted credentials without writing them back."""
        self._credentials = credentials
        self.logger.info("Loaded stored credentials", expires_at=credentials.expires_at.isoformat())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the stored expiry lies in the past."""
        if self._credentials is None:
            return False
        return self._credentials.is_expired(now or self._clock())

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """True when the credentials expire within the refresh horizon."""
        if self._credentials is None:
            return False
        return self._credentials.expires_within(self.refresh_horizon, now or self._clock())

    async def grant(self) -> Credentials:
        """Obtain fresh credentials through the client-credentials grant."""
        self.logger.info("Doing client_credentials grant")
        credentials = await self._request_token({"grant_type": "client_credentials"})
        self.logger.info("Token grant successful", expires_at=credentials.expires_at.isoformat())
        self._replace(credentials)
        return credentials

    async def refresh(self) -> Credentials:
        """Exchange the refresh token for a new credential pair."""
        current = self._require_credentials()
        if current.is_expired(self._clock()):
            raise TokenExpiredError(current.expires_at.isoformat())

        self.logger.info("Doing token refresh")
        credentials = await self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
        })
        self.logger.info("Token refresh successful", expires_at=credentials.expires_at.isoformat())
        self._replace(credentials)
        return credentials

    async def ensure_fresh(self) -> bool:
        """Run the pre-cycle credential check.

        Raises :class:`TokenExpiredError` when the credentials are already
        expired. Otherwise refreshes when inside the horizon and returns
        whether a refresh succeeded; a failed refresh keeps the current
        credentials and is only logged.
        """
        current = self._require_credentials()
        now = self._clock()

        if current.is_expired(now):
            raise TokenExpiredError(current.expires_at.isoformat())

        if not current.expires_within(self.refresh_horizon, now):
            return False

        self.logger.info(
            "Token expires within refresh horizon, refreshing",
            expires_at=current.expires_at.isoformat(),
            horizon_seconds=self.refresh_horizon.total_seconds(),
        )

        try:
            await asyncio.wait_for(self.refresh(), self.refresh_timeout)
        except TokenExpiredError:
            raise
        except asyncio.TimeoutError:
            self.logger.error(
                "Failed to refresh token",
                error="refresh timed out",
                timeout=self.refresh_timeout,
                expires_at=current.expires_at.isoformat(),
            )
            return False
        except Exception as e:
            self.logger.error(
                "Failed to refresh token",
                error=str(e),
                expires_at=current.expires_at.isoformat(),
            )
            return False

        return True

    async def _request_token(self, fields: Dict[str, str]) -> Credentials:
        grant_type = fields["grant_type"]
        form = dict(fields)
        form["client_id"] = self.client_id
        form["client_secret"] = self.client_secret

        await self._rate_limiter.acquire()

        try:
            response = await self._http.post(
                self.token_url,
                data=form,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.refresh_timeout,
            )
        except httpx.HTTPError as exc:
            self._record(grant_type, "error")
            raise TokenRequestError(f"token request failed: {exc}") from exc

        if not response.is_success:
            self._record(grant_type, "error")
            self.logger.error(
                "Token endpoint returned non-OK status code",
                grant_type=grant_type,
                status_code=response.status_code,
                body=response.text,
            )
            raise TokenRequestError(
                f"token {grant_type} returned {response.status_code} status code",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            body = TokenResponse.model_validate_json(response.content)
        except PydanticValidationError as exc:
            self._record(grant_type, "error")
            raise TokenRequestError(
                f"token {grant_type} response could not be decoded",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        self._record(grant_type, "success")
        return Credentials.from_token_response(body, self._clock())

    def _replace(self, credentials: Credentials) -> None:
        self._credentials = credentials
        if self.store is None:
            return

        try:
            self.store.save(credentials)
        except Exception as e:
            self.logger.error("Failed to write tokens to disk", error=str(e), path=str(self.store.path))

    def _require_credentials(self) -> Credentials:
        if self._credentials is None:
            raise TokenRequestError("no credentials available; a grant is required first")
        return self._credentials

    def _record(self, grant_type: str, status: str) -> None:
        if self.metrics:
            self.metrics.record_token_request(grant_type, status)
