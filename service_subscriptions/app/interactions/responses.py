"""
Interaction response formatting.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..patreon.models import Patron, utcnow
from ..patreon.tiers import TierCatalog
from .models import EPHEMERAL_FLAG, DiscordUser, InteractionResponseType

RED = 0xEB4034
BLUE = 0x4287F5

NOT_READY_MESSAGE = "Initial data not loaded yet, please try again in a few minutes"
GUILD_NOT_ALLOWED_MESSAGE = "This guild is not in the allowed guilds list"
MISSING_EMAIL_MESSAGE = "Missing email"
EMAIL_WRONG_TYPE_MESSAGE = "Email was wrong type"
UNKNOWN_COMMAND_MESSAGE = "Unknown command"


def pong() -> Dict[str, Any]:
    return {"type": InteractionResponseType.PONG.value}


def ephemeral_message(content: str) -> Dict[str, Any]:
    return {
        "type": InteractionResponseType.CHANNEL_MESSAGE_WITH_SOURCE.value,
        "data": {"content": content, "flags": EPHEMERAL_FLAG},
    }


def _discord_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return f"<t:{int(value.timestamp())}>"


def _author(invoker: Optional[DiscordUser]) -> Optional[Dict[str, str]]:
    if invoker is None:
        return None
    return {"name": invoker.username, "icon_url": invoker.avatar_url(256)}


def _field(name: str, value: str) -> Dict[str, Any]:
    return {"name": name, "value": value or "None", "inline": True}


class LookupResponseFormatter:
    """Renders the outcome of an email lookup as an embed message."""

    def __init__(self, tiers: TierCatalog):
        self.tiers = tiers

    def render(
        self,
        found: bool,
        patron: Optional[Patron],
        query_email: str,
        invoker: Optional[DiscordUser] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        timestamp = (now or utcnow()).isoformat()
        if found and patron is not None:
            embed = self._found_embed(patron)
        else:
            embed = {
                "title": "Account Not Found",
                "description": f"No Patreon account with email `{query_email}` found",
                "color": RED,
            }

        embed["timestamp"] = timestamp
        author = _author(invoker)
        if author is not None:
            embed["author"] = author

        return {
            "type": InteractionResponseType.CHANNEL_MESSAGE_WITH_SOURCE.value,
            "data": {"embeds": [embed]},
        }

    def _found_embed(self, patron: Patron) -> Dict[str, Any]:
        if patron.linked_account_id is not None:
            discord = f"<@{patron.linked_account_id}> ({patron.linked_account_id})"
        else:
            discord = "Not linked"

        fields: List[Dict[str, Any]] = [
            _field("Status", patron.status),
            _field("Last Charge Status", patron.last_charge_status),
            _field("Last Charge Date", _discord_timestamp(patron.last_charge_at)),
            _field("Join Date", _discord_timestamp(patron.relationship_started_at)),
            _field("Active Tiers", ", ".join(self.tiers.labels_for(patron.tiers))),
            _field("Discord Account", discord),
        ]

        return {
            "title": "Account Found",
            "url": patron.profile_url,
            "color": BLUE,
            "fields": fields,
        }
