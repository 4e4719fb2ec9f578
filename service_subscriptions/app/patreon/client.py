"""
Paginated Patreon members client.
"""

import asyncio
from typing import Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.errors import FetchError, TokenExpiredError
from shared.logging import get_logger

from ..ratelimit import TokenBucketRateLimiter
from .models import Credentials, IncludedResource, Member, Patron, PledgeResponse, Snapshot, freeze_snapshot
from .tiers import TierCatalog

USER_AGENT = "subscriptions-app (https://github.com/TicketsBot/subscriptions-app)"

DEFAULT_API_BASE_URL = "https://www.patreon.com/api/oauth2/v2"

MEMBER_QUERY = {
    "include": "currently_entitled_tiers,user",
    "fields[member]": "last_charge_date,last_charge_status,patron_status,email,pledge_relationship_start",
    "fields[user]": "social_connections",
}


def create_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """HTTP client shared by the token manager and the members client."""
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=False,
    )


class PatreonClient:
    """Builds complete membership snapshots from the campaign members endpoint."""

    def __init__(
        self,
        campaign_id: int,
        *,
        http_client: httpx.AsyncClient,
        rate_limiter: TokenBucketRateLimiter,
        tiers: TierCatalog,
        api_base_url: str = DEFAULT_API_BASE_URL,
        page_timeout: float = 600.0,
    ):
        self.campaign_id = campaign_id
        self.api_base_url = api_base_url.rstrip("/")
        self.page_timeout = page_timeout
        self.tiers = tiers
        self.logger = get_logger("subscriptions.patreon_client")

        self._http = http_client
        self._rate_limiter = rate_limiter

    def first_page_url(self) -> str:
        url = httpx.URL(
            f"{self.api_base_url}/campaigns/{self.campaign_id}/members",
            params=MEMBER_QUERY,
        )
        return str(url)

    async def fetch_pledges(self, credentials: Credentials) -> Snapshot:
        """Walk every page and return the complete email -> patron map.

        Any failure aborts the walk; no partial map is ever returned.
        """
        if credentials.is_expired():
            raise TokenExpiredError(credentials.expires_at.isoformat())

        patrons: Dict[str, Patron] = {}
        url: Optional[str] = self.first_page_url()
        pages = 0

        while url is not None:
            page = await self.fetch_page_with_timeout(url, credentials.access_token, self.page_timeout)
            pages += 1

            for member in page.data:
                patron = self._build_patron(member, page.included)
                if patron is not None:
                    patrons[patron.email] = patron

            url = page.next_url

        self.logger.info("Fetched pledges", pages=pages, patrons=len(patrons))
        return freeze_snapshot(patrons)

    async def fetch_page_with_timeout(self, url: str, access_token: str, timeout: float) -> PledgeResponse:
        try:
            return await asyncio.wait_for(self.fetch_page(url, access_token), timeout)
        except asyncio.TimeoutError as exc:
            self.logger.error("Pledge page timed out", url=url, timeout=timeout)
            raise FetchError(f"pledge page timed out after {timeout}s", url=url) from exc

    async def fetch_page(self, url: str, access_token: str) -> PledgeResponse:
        """Fetch and decode one page of members."""
        self.logger.debug("Fetching page", url=url)

        await self._rate_limiter.acquire()

        try:
            response = await self._http.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "User-Agent": USER_AGENT,
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            self.logger.error("Pledge request failed", url=url, error=str(exc))
            raise FetchError(f"pledge request failed: {exc}", url=url) from exc

        if response.status_code != 200:
            self.logger.error(
                "Pledge response returned non-OK status code",
                status_code=response.status_code,
                body=response.text,
            )
            raise FetchError(
                f"pledge response returned {response.status_code} status code",
                status_code=response.status_code,
                url=url,
            )

        try:
            page = PledgeResponse.model_validate_json(response.content)
        except PydanticValidationError as exc:
            self.logger.error("Pledge response could not be decoded", url=url, error=str(exc))
            raise FetchError("pledge response could not be decoded", status_code=200, url=url) from exc

        self.logger.debug("Page fetched successfully", url=url, members=len(page.data))
        return page

    def _build_patron(self, member: Member, included: List[IncludedResource]) -> Optional[Patron]:
        user_id = member.user_id
        attributes = member.attributes

        if not attributes.email:
            self.logger.debug("Member has no email", patron_id=user_id)
            return None

        tiers = set()
        for tier in member.relationships.currently_entitled_tiers.data:
            if tier.id not in self.tiers:
                self.logger.warning("Unknown tier", tier_id=tier.id, patron_id=user_id)
                continue
            tiers.add(tier.id)

        discord_id: Optional[int] = None
        for resource in included:
            if resource.id == user_id and resource.type in (None, "user"):
                discord_id = resource.discord_id
                break

        return Patron(
            external_id=user_id,
            email=attributes.email,
            tiers=frozenset(tiers),
            linked_account_id=discord_id,
            status=attributes.patron_status or "",
            last_charge_status=attributes.last_charge_status or "",
            last_charge_at=attributes.last_charge_date,
            relationship_started_at=attributes.pledge_relationship_start,
        )
