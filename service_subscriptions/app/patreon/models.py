"""
Patreon wire models and the domain records built from them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Token endpoint

class TokenResponse(BaseModel):
    """Body of a successful grant or refresh."""
    access_token: str
    refresh_token: str
    expires_in: int = Field(description="Lifetime in seconds")
    scope: Optional[str] = None
    token_type: Optional[str] = None


# Members endpoint (JSON:API)

class ResourceId(BaseModel):
    id: int


class UserRelationship(BaseModel):
    data: Optional[ResourceId] = None


class TiersRelationship(BaseModel):
    data: List[ResourceId] = Field(default_factory=list)


class MemberRelationships(BaseModel):
    user: UserRelationship = Field(default_factory=UserRelationship)
    currently_entitled_tiers: TiersRelationship = Field(default_factory=TiersRelationship)


class MemberAttributes(BaseModel):
    email: Optional[str] = None
    last_charge_date: Optional[datetime] = None
    last_charge_status: Optional[str] = None
    patron_status: Optional[str] = None
    pledge_relationship_start: Optional[datetime] = None


class Member(BaseModel):
    attributes: MemberAttributes = Field(default_factory=MemberAttributes)
    relationships: MemberRelationships = Field(default_factory=MemberRelationships)

    @property
    def user_id(self) -> int:
        user = self.relationships.user.data
        return user.id if user is not None else 0


class DiscordConnection(BaseModel):
    user_id: Optional[int] = None


class SocialConnections(BaseModel):
    discord: Optional[DiscordConnection] = None


class IncludedAttributes(BaseModel):
    social_connections: Optional[SocialConnections] = None


class IncludedResource(BaseModel):
    """An entry of the ``included`` array (users and tiers)."""
    id: int
    type: Optional[str] = None
    attributes: IncludedAttributes = Field(default_factory=IncludedAttributes)

    @property
    def discord_id(self) -> Optional[int]:
        connections = self.attributes.social_connections
        if connections is None or connections.discord is None:
            return None
        return connections.discord.user_id


class PageLinks(BaseModel):
    first: Optional[str] = None
    next: Optional[str] = None


class PledgeResponse(BaseModel):
    """One page of campaign members."""
    data: List[Member] = Field(default_factory=list)
    included: List[IncludedResource] = Field(default_factory=list)
    links: Optional[PageLinks] = None

    @property
    def next_url(self) -> Optional[str]:
        if self.links is None:
            return None
        return self.links.next


# Domain records

@dataclass(frozen=True)
class Credentials:
    """OAuth2 credentials for the Patreon API."""
    access_token: str
    refresh_token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utcnow())

    def expires_within(self, horizon: timedelta, now: Optional[datetime] = None) -> bool:
        return self.expires_at - (now or utcnow()) < horizon

    @classmethod
    def from_token_response(cls, response: TokenResponse, now: Optional[datetime] = None) -> "Credentials":
        issued_at = now or utcnow()
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_at=issued_at + timedelta(seconds=response.expires_in),
        )


@dataclass(frozen=True)
class Patron:
    """A campaign member as held in a snapshot."""
    external_id: int
    email: str
    tiers: FrozenSet[int] = field(default_factory=frozenset)
    linked_account_id: Optional[int] = None
    status: str = ""
    last_charge_status: str = ""
    last_charge_at: Optional[datetime] = None
    relationship_started_at: Optional[datetime] = None

    @property
    def profile_url(self) -> str:
        return f"https://www.patreon.com/user?u={self.external_id}"


Snapshot = Mapping[str, Patron]


def freeze_snapshot(patrons: Mapping[str, Patron]) -> Snapshot:
    """Wrap a freshly built map so it cannot be mutated after publication."""
    return MappingProxyType(dict(patrons))
