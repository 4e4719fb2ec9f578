"""
Interaction dispatch for the lookup command.
"""

from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.errors import ServiceError, SnapshotNotReadyError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..cache import SnapshotCache
from . import responses
from .models import Interaction, InteractionType
from .responses import LookupResponseFormatter

LOOKUP_COMMAND = "lookup"
EMAIL_OPTION = "email"


class InteractionHandler:
    """Turns a verified interaction body into a response payload."""

    def __init__(
        self,
        cache: SnapshotCache,
        formatter: LookupResponseFormatter,
        allowed_guilds: Iterable[int],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.formatter = formatter
        self.allowed_guilds = frozenset(allowed_guilds)
        self.metrics = metrics
        self.logger = get_logger("subscriptions.interactions")

    def handle(self, body: bytes) -> Dict[str, Any]:
        try:
            interaction = Interaction.model_validate_json(body)
        except PydanticValidationError as exc:
            self._record("unknown", "invalid")
            raise ValidationError("Failed to parse body") from exc

        if interaction.type == InteractionType.PING:
            self._record("ping", "ok")
            return responses.pong()

        if interaction.type == InteractionType.APPLICATION_COMMAND:
            return self.handle_command(interaction)

        self._record("unsupported", "error")
        raise ServiceError(
            f"interaction type {interaction.type} not implemented",
            details={"interaction_type": interaction.type},
        )

    def handle_command(self, interaction: Interaction) -> Dict[str, Any]:
        if interaction.guild_id not in self.allowed_guilds:
            self._record("command", "guild_not_allowed")
            return responses.ephemeral_message(responses.GUILD_NOT_ALLOWED_MESSAGE)

        command = interaction.data
        if command is None:
            raise ValidationError("Failed to parse application command payload")

        if command.name != LOOKUP_COMMAND:
            self.logger.warning("Unknown command", command=command.name)
            self._record("command", "unknown_command")
            return responses.ephemeral_message(responses.UNKNOWN_COMMAND_MESSAGE)

        return self._lookup(interaction)

    def _lookup(self, interaction: Interaction) -> Dict[str, Any]:
        options = interaction.data.options
        if not options or options[0].name != EMAIL_OPTION:
            self._record("command", "missing_email")
            return responses.ephemeral_message(responses.MISSING_EMAIL_MESSAGE)

        email = options[0].value
        if not isinstance(email, str):
            self._record("command", "invalid_email")
            return responses.ephemeral_message(responses.EMAIL_WRONG_TYPE_MESSAGE)

        try:
            patron = self.cache.lookup(email)
        except SnapshotNotReadyError:
            self._record("command", "not_ready")
            return responses.ephemeral_message(responses.NOT_READY_MESSAGE)

        found = patron is not None
        self._record("command", "found" if found else "not_found")
        self.logger.info("Lookup served", found=found, guild_id=interaction.guild_id)
        return self.formatter.render(found, patron, email, interaction.invoker)

    def _record(self, interaction_type: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_interaction(interaction_type, outcome)
