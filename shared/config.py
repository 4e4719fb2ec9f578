"""
Shared configuration management for the Subscriptions App.

Values are resolved from constructor arguments, then environment variables,
then a ``.env`` file, then ``config.json`` in the working directory. Lists and
mappings supplied through the environment must be JSON encoded, e.g.
``DISCORD_ALLOWED_GUILDS='[508392876359680000]'``.

``config.json`` may use flat field names or the sectioned layout::

    {"server_address": "0.0.0.0:8080",
     "discord": {"public_key": "...", "allowed_guilds": [...]},
     "patreon": {"client_id": "...", "client_secret": "...", "campaign_id": 1},
     "tiers": {"4071609": "Premium"}}

Server address, Discord key and guilds, and Patreon client credentials and
campaign are required; construction fails when any of them is missing or empty.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_TIERS: Dict[int, str] = {
    4071609: "Premium",
    5259899: "Whitelabel",
    7502618: "Whitelabel",
}

# Sections of config.json whose keys map to "<section>_<key>" fields
CONFIG_SECTIONS = ("discord", "patreon")

CONFIG_KEY_ALIASES = {"server_address": "server_addr"}


def flatten_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map a sectioned config.json document onto flat field names.

    Flat keys win over the same setting given inside a section.
    """
    flat: Dict[str, Any] = {}
    for section in CONFIG_SECTIONS:
        values = data.get(section)
        if isinstance(values, dict):
            for key, value in values.items():
                flat[f"{section}_{key}"] = value

    for key, value in data.items():
        if key in CONFIG_SECTIONS and isinstance(value, dict):
            continue
        flat[CONFIG_KEY_ALIASES.get(key, key)] = value

    return flat


class ConfigFileSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading ``config.json`` in either layout."""

    def __init__(self, settings_cls: Type[BaseSettings], json_file: Optional[str] = None):
        super().__init__(settings_cls)
        path = Path(json_file or self.config.get("json_file") or "config.json")
        self.file_data: Dict[str, Any] = {}
        if path.is_file():
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
            if not isinstance(document, dict):
                raise ValueError(f"{path} must contain a JSON object")
            self.file_data = flatten_config_file(document)

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self.file_data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[key] = value
        return data


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        json_file="config.json",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    production_mode: bool = Field(default=False)
    log_level: str = Field(default="info")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            ConfigFileSettingsSource(settings_cls),
            file_secret_settings,
        )


class SubscriptionsConfig(BaseConfig):
    """Configuration for the subscriptions service."""

    # HTTP server
    server_addr: str = Field(min_length=1)

    # Discord interactions
    discord_public_key: str = Field(min_length=1)
    discord_allowed_guilds: List[int] = Field(min_length=1)

    # Patreon source
    patreon_client_id: str = Field(min_length=1)
    patreon_client_secret: str = Field(min_length=1)
    patreon_campaign_id: int = Field(gt=0)
    patreon_tokens_file_path: str = Field(default="tokens.json")
    patreon_requests_per_minute: int = Field(default=100, gt=0)
    patreon_api_base_url: str = Field(default="https://www.patreon.com/api/oauth2/v2")
    patreon_token_url: str = Field(default="https://www.patreon.com/api/oauth2/token")

    # Tier catalog: source tier id -> local label
    tiers: Dict[int, str] = Field(default_factory=lambda: dict(DEFAULT_TIERS))

    # Poll scheduling (seconds)
    poll_interval_seconds: float = Field(default=60.0, gt=0)
    cycle_timeout_seconds: float = Field(default=3600.0, gt=0)
    page_timeout_seconds: float = Field(default=600.0, gt=0)
    refresh_timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_horizon_seconds: float = Field(default=3 * 24 * 3600.0, gt=0)
    grant_retry_seconds: float = Field(default=10.0, gt=0)

    @field_validator("server_addr")
    @classmethod
    def _require_port(cls, value: str) -> str:
        _, sep, port = value.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError("server address must be host:port")
        return value

    @field_validator("tiers")
    @classmethod
    def _require_tiers(cls, value: Dict[int, str]) -> Dict[int, str]:
        if not value:
            raise ValueError("Tier catalog must contain at least one tier")
        return value

    @property
    def host(self) -> str:
        host, _, _ = self.server_addr.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.server_addr.rpartition(":")
        return int(port)


def get_config(**overrides) -> SubscriptionsConfig:
    """Get configuration for the subscriptions service."""
    return SubscriptionsConfig(**overrides)
