"""Client configuration.

The server hands clients their configuration as JSON (camelCase keys); the
same models also load from YAML files or plain dicts with snake_case keys.

Example (YAML):
    appName: game
    server:
      commandCenter:
        url: https://example.com/game/cmd
        mode: blocking
        commands:
          user:
            - name: login
              params: [username, password]
      msgStream:
        detect: [websocket, longpolling]
        transports:
          websocket:
            url: wss://example.com/msgstream
          longpolling:
            url: https://example.com/msgstream
            afterErrorInterval: 2000
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .protocol.commands import CommandMode


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StreamTransportConfig(_WireModel):
    """Settings for one message stream transport type.

    Intervals are in milliseconds, as on the wire. None selects the
    transport's own default.
    """

    url: str | None = None
    after_request_interval: int | None = Field(default=None, ge=0)
    after_error_interval: int | None = Field(default=None, ge=0)

    # Origin used to resolve a bare-path socket url (e.g., "https://example.com")
    origin: str | None = None


class MessageStreamConfig(_WireModel):
    """Which message stream transports to try, in order."""

    detect: list[str] = Field(default_factory=list)
    transports: dict[str, StreamTransportConfig] = Field(default_factory=dict)

    def transport_config(self, type_name: str) -> StreamTransportConfig:
        return self.transports.get(type_name) or StreamTransportConfig()


class CommandSpec(_WireModel):
    """A command a module exposes, with its declared parameter names."""

    name: str
    params: list[str] = Field(default_factory=list)


class CommandCenterConfig(_WireModel):
    """Settings for the command scheduler."""

    url: str
    mode: CommandMode = CommandMode.FREE

    # Request timeout in seconds
    timeout: float | None = None

    # module name -> commands it exposes
    commands: dict[str, list[CommandSpec]] = Field(default_factory=dict)


class ServerConfig(_WireModel):
    command_center: CommandCenterConfig | None = None
    msg_stream: MessageStreamConfig | None = None


class ClientConfig(_WireModel):
    """Top-level client configuration."""

    app_name: str | None = None
    app_version: str | None = None
    base_url: str = ""
    development_mode: bool = False
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ClientConfig:
        """Validate configuration from a dict (camelCase or snake_case keys)."""
        return cls.model_validate(dict(data))

    @classmethod
    def from_yaml(cls, path: str | Path) -> ClientConfig:
        """Load configuration from a YAML file.

        ``COURIER_DEVELOPMENT_MODE=1`` in the environment forces development
        mode on.
        """
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls.from_mapping(data)
        if os.environ.get("COURIER_DEVELOPMENT_MODE", "").lower() in ("1", "true", "yes"):
            config.development_mode = True
        return config
