"""
Tests for interaction dispatch and response formatting.
"""

import json
from datetime import datetime, timezone

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_subscriptions.app.cache import SnapshotCache
from service_subscriptions.app.interactions import InteractionHandler, LookupResponseFormatter
from service_subscriptions.app.interactions import responses
from service_subscriptions.app.interactions.models import DiscordUser
from service_subscriptions.app.patreon import DEFAULT_CATALOG, Patron
from shared.errors import ServiceError, ValidationError

GUILD_ID = 508392876359680000

PATRON = Patron(
    external_id=12345,
    email="a@example.com",
    tiers=frozenset({4071609}),
    linked_account_id=98765,
    status="active_patron",
    last_charge_status="Paid",
    last_charge_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    relationship_started_at=datetime(2029, 1, 1, tzinfo=timezone.utc),
)


def command_body(email="a@example.com", name="lookup", guild_id=GUILD_ID, option_name="email"):
    options = [] if email is None else [{"name": option_name, "type": 3, "value": email}]
    return json.dumps({
        "type": 2,
        "id": "1",
        "guild_id": str(guild_id) if guild_id is not None else None,
        "member": {"user": {"id": "80351110224678912", "username": "nelly", "avatar": None}},
        "data": {"name": name, "options": options},
    }).encode()


def embed_fields(response):
    return {field["name"]: field["value"] for field in response["data"]["embeds"][0]["fields"]}


@pytest.fixture
def cache():
    """Cache holding one patron."""
    cache = SnapshotCache()
    cache.swap({PATRON.email: PATRON})
    return cache


@pytest.fixture
def handler(cache):
    """Handler allowing a single guild."""
    return InteractionHandler(cache, LookupResponseFormatter(DEFAULT_CATALOG), [GUILD_ID])


class TestInteractionHandler:
    """Test cases for InteractionHandler."""

    def test_ping(self, handler):
        """Test that a ping is answered with a pong."""
        assert handler.handle(b'{"type":1}') == {"type": 1}

    def test_unparseable_body(self, handler):
        """Test that a malformed body is a client error."""
        with pytest.raises(ValidationError) as exc_info:
            handler.handle(b"{not json")
        assert exc_info.value.message == "Failed to parse body"

    def test_unsupported_type(self, handler):
        """Test that other interaction types are refused."""
        with pytest.raises(ServiceError):
            handler.handle(b'{"type":3}')

    def test_lookup_found(self, handler):
        """Test that a known email renders the account embed."""
        response = handler.handle(command_body())

        assert response["type"] == 4
        embed = response["data"]["embeds"][0]
        assert embed["title"] == "Account Found"
        assert embed["color"] == responses.BLUE
        assert embed["url"] == "https://www.patreon.com/user?u=12345"
        assert embed["author"]["name"] == "nelly"

        fields = embed_fields(response)
        assert fields["Active Tiers"] == "Premium"
        assert fields["Discord Account"] == "<@98765> (98765)"
        assert fields["Last Charge Date"] == f"<t:{int(PATRON.last_charge_at.timestamp())}>"

    def test_lookup_not_found(self, handler):
        """Test that an unknown email renders the not-found embed."""
        response = handler.handle(command_body("b@example.com"))

        embed = response["data"]["embeds"][0]
        assert embed["title"] == "Account Not Found"
        assert embed["color"] == responses.RED
        assert "`b@example.com`" in embed["description"]

    def test_lookup_before_snapshot(self):
        """Test that lookups before the first snapshot get an ephemeral notice."""
        handler = InteractionHandler(SnapshotCache(), LookupResponseFormatter(DEFAULT_CATALOG), [GUILD_ID])
        response = handler.handle(command_body())

        assert response["data"]["content"] == responses.NOT_READY_MESSAGE
        assert response["data"]["flags"] == 64

    def test_guild_not_allowed(self, handler):
        """Test that commands from other guilds are refused."""
        response = handler.handle(command_body(guild_id=1))
        assert response["data"]["content"] == responses.GUILD_NOT_ALLOWED_MESSAGE

    def test_direct_message_not_allowed(self, handler):
        """Test that commands outside a guild are refused."""
        response = handler.handle(command_body(guild_id=None))
        assert response["data"]["content"] == responses.GUILD_NOT_ALLOWED_MESSAGE

    def test_missing_email(self, handler):
        """Test that a lookup without options is answered ephemerally."""
        response = handler.handle(command_body(email=None))
        assert response["data"]["content"] == responses.MISSING_EMAIL_MESSAGE

    def test_wrong_option_name(self, handler):
        """Test that an option other than email counts as missing."""
        response = handler.handle(command_body(option_name="user"))
        assert response["data"]["content"] == responses.MISSING_EMAIL_MESSAGE

    def test_email_wrong_type(self, handler):
        """Test that a non-string email is refused."""
        response = handler.handle(command_body(email=42))
        assert response["data"]["content"] == responses.EMAIL_WRONG_TYPE_MESSAGE

    def test_unknown_command(self, handler):
        """Test that other command names are answered ephemerally."""
        response = handler.handle(command_body(name="status"))
        assert response["data"]["content"] == responses.UNKNOWN_COMMAND_MESSAGE


class TestLookupResponseFormatter:
    """Test cases for LookupResponseFormatter."""

    @pytest.fixture
    def formatter(self):
        """Formatter over the default catalog."""
        return LookupResponseFormatter(DEFAULT_CATALOG)

    def test_unlinked_account(self, formatter):
        """Test that patrons without a Discord link say so."""
        patron = Patron(external_id=1, email="a@example.com")
        response = formatter.render(True, patron, "a@example.com")

        fields = embed_fields(response)
        assert fields["Discord Account"] == "Not linked"
        assert fields["Last Charge Date"] == "Unknown"
        assert "author" not in response["data"]["embeds"][0]

    def test_tier_labels_sorted(self, formatter):
        """Test that labels are listed in tier id order."""
        patron = Patron(external_id=1, email="a@example.com", tiers=frozenset({7502618, 4071609}))
        fields = embed_fields(formatter.render(True, patron, "a@example.com"))
        assert fields["Active Tiers"] == "Premium, Whitelabel"

    def test_timestamp_and_author(self, formatter):
        """Test the embed timestamp and the invoker as author."""
        now = datetime(2030, 5, 1, tzinfo=timezone.utc)
        invoker = DiscordUser(id=80351110224678912, username="nelly", avatar="abc")
        embed = formatter.render(False, None, "x@example.com", invoker, now)["data"]["embeds"][0]

        assert embed["timestamp"] == now.isoformat()
        assert embed["author"]["icon_url"].endswith("/abc.png?size=256")
