"""
Discord interaction payload models.
"""

from enum import IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class InteractionType(IntEnum):
    PING = 1
    APPLICATION_COMMAND = 2
    MESSAGE_COMPONENT = 3
    APPLICATION_COMMAND_AUTOCOMPLETE = 4
    MODAL_SUBMIT = 5


class InteractionResponseType(IntEnum):
    PONG = 1
    CHANNEL_MESSAGE_WITH_SOURCE = 4


EPHEMERAL_FLAG = 1 << 6


class DiscordUser(BaseModel):
    id: int
    username: str = ""
    avatar: Optional[str] = None

    def avatar_url(self, size: int = 256) -> str:
        if self.avatar:
            extension = "gif" if self.avatar.startswith("a_") else "png"
            return f"https://cdn.discordapp.com/avatars/{self.id}/{self.avatar}.{extension}?size={size}"
        return f"https://cdn.discordapp.com/embed/avatars/{(self.id >> 22) % 6}.png"


class GuildMember(BaseModel):
    user: Optional[DiscordUser] = None


class CommandOption(BaseModel):
    name: str
    type: Optional[int] = None
    value: Any = None


class CommandData(BaseModel):
    name: str
    options: List[CommandOption] = Field(default_factory=list)


class Interaction(BaseModel):
    """The subset of an interaction payload the service reads."""
    type: int
    id: Optional[str] = None
    guild_id: Optional[int] = None
    member: Optional[GuildMember] = None
    user: Optional[DiscordUser] = None
    data: Optional[CommandData] = None

    @property
    def invoker(self) -> Optional[DiscordUser]:
        """The user who ran the command, in a guild or in DMs."""
        if self.member is not None and self.member.user is not None:
            return self.member.user
        return self.user
