"""Named client configurations.

A configuration names one identity provider client: where its discovery
document lives, the client identifier, and what to ask for. Configurations
are kept in local storage, one entry per name, and the last selected name
is remembered between runs.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any

from .storage import LocalStore

logger = logging.getLogger(__name__)

SELECTED_CONFIG_KEY = "config"

# Fields that must be non-empty before a configuration can be saved
REQUIRED_FIELDS = ("name", "authentication_server", "client_id", "scope")


class ConfigError(Exception):
    """Invalid or unknown client configuration."""

    pass


@dataclass(frozen=True)
class ClientConfig:
    """Read-only view of one client configuration.

    client_secret is kept for reference only; the PKCE flow is a public
    client flow and never sends it.
    """

    name: str | None
    authentication_server: str
    client_id: str
    scope: str = "openid"
    audience: str = ""
    client_secret: str = ""

    def missing_fields(self) -> list[str]:
        """Return the required fields that are empty."""
        return [f for f in REQUIRED_FIELDS if not getattr(self, f)]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_display_dict(self) -> dict[str, Any]:
        """Like to_dict, with the client secret masked."""
        data = self.to_dict()
        if data["client_secret"]:
            data["client_secret"] = "********"
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientConfig":
        return cls(
            name=data.get("name"),
            authentication_server=data.get("authentication_server", ""),
            client_id=data.get("client_id", ""),
            scope=data.get("scope", "openid"),
            audience=data.get("audience", "") or "",
            client_secret=data.get("client_secret", "") or "",
        )


class ConfigurationStore:
    """Create, rename, copy, remove and select named configurations.

    Args:
        configurations: Store holding one entry per configuration name
        session: Store holding the remembered selection
    """

    def __init__(self, configurations: LocalStore, session: LocalStore):
        self.configurations = configurations
        self.session = session

    def list(self) -> list[ClientConfig]:
        """All configurations sorted by name."""
        configs = []
        for name, data in self.configurations.get_items().items():
            try:
                configs.append(ClientConfig.from_dict({**data, "name": name}))
            except (TypeError, AttributeError) as e:
                logger.warning(f"Skipping invalid configuration {name!r}: {e}")
        return sorted(configs, key=lambda c: (c.name or "").lower())

    def get(self, name: str) -> ClientConfig | None:
        data = self.configurations.get_item(name)
        if data is None:
            return None
        return ClientConfig.from_dict({**data, "name": name})

    def require(self, name: str) -> ClientConfig:
        """Like get, raising ConfigError for unknown names."""
        config = self.get(name)
        if config is None:
            raise ConfigError(f"Configuration '{name}' not found")
        return config

    def _validate(self, config: ClientConfig) -> None:
        missing = config.missing_fields()
        if missing:
            raise ConfigError(f"Configuration is missing required fields: {', '.join(missing)}")

    def save(self, config: ClientConfig, previous_name: str | None = None) -> ClientConfig:
        """Save a configuration under its name and select it.

        When previous_name is given and differs, the configuration is being
        renamed and the old entry is removed.
        """
        self._validate(config)

        self.configurations.set_item(config.name, config.to_dict())  # type: ignore[arg-type]
        if previous_name and previous_name != config.name:
            self.configurations.remove_item(previous_name)
            logger.debug(f"Renamed configuration {previous_name!r} to {config.name!r}")

        self.select(config.name)
        return config

    def save_as(self, config: ClientConfig) -> ClientConfig:
        """Save a copy, prefixing the name with "Copy of" if it is taken."""
        self._validate(config)

        if self.get(config.name) is not None:
            config = replace(config, name=f"Copy of {config.name}")

        return self.save(config)

    def remove(self, name: str) -> bool:
        """Remove a configuration, clearing the selection if it was selected."""
        removed = self.configurations.remove_item(name)
        if removed and self.session.get_item(SELECTED_CONFIG_KEY) == name:
            self.select(None)
        return removed

    def select(self, name: str | None) -> ClientConfig | None:
        """Remember name as the current configuration (None clears it)."""
        if name is None:
            self.session.remove_item(SELECTED_CONFIG_KEY)
            return None

        config = self.require(name)
        self.session.set_item(SELECTED_CONFIG_KEY, name)
        return config

    def selected(self) -> ClientConfig | None:
        """The remembered configuration, if it still exists."""
        name = self.session.get_item(SELECTED_CONFIG_KEY)
        if not name:
            return None
        return self.get(name)
