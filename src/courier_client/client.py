"""Top-level client.

Owns one EventBus and everything publishing to it:
- CommandScheduler: batched command requests
- CommandInvoker: declared commands, callable by module
- DeliveryReconstructor: ordered server-pushed events

Two ways to get a configured client:

    # Pre-configured
    client = CourierClient(ClientConfig.from_yaml("client.yaml"))

    # Fetch the configuration from the server first
    client = await CourierClient.bootstrap("https://example.com/game/config")

    async with client:
        client.subscribe("chat.message", on_message)
        client.module("user").login("bob", "secret", callback=on_login)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import httpx

from .bus import EventBus, EventListener
from .config import ClientConfig
from .delivery import DeliveryReconstructor
from .errors import NotConfiguredError
from .invoker import CommandInvoker, ModuleCommands
from .protocol.commands import Command, CommandCallback
from .scheduler import CommandScheduler
from .streams import StreamCapabilities
from .transport import RequestTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Published by the session module when a session key is issued or revoked
SESSION_SET = "session.set"
SESSION_UNSET = "session.unset"


def _session_key_of(session: Any) -> str | None:
    if isinstance(session, Mapping):
        return session.get("key")
    return getattr(session, "key", None)


class CourierClient:
    """Client for a command-and-event backend."""

    def __init__(
        self,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        transport: RequestTransport | None = None,
        capabilities: StreamCapabilities | None = None,
    ):
        self.bus = EventBus()
        self.delivery = DeliveryReconstructor(self.bus)
        self.scheduler: CommandScheduler | None = None
        self.invoker: CommandInvoker | None = None
        self.config: ClientConfig | None = None

        self._transport = transport
        self._capabilities = capabilities
        self._session_unsubscribers: list[Callable[[], None]] = []

        if config is not None:
            self.configure(config)

    @classmethod
    async def bootstrap(
        cls,
        config_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        **kwargs: Any,
    ) -> CourierClient:
        """Fetch the client configuration from the server, then configure.

        Raises:
            ConnectionError: If the configuration cannot be fetched
            pydantic.ValidationError: If the configuration is invalid
        """
        owns_client = http_client is None
        client = http_client or httpx.AsyncClient(timeout=timeout)

        try:
            response = await client.get(config_url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ConnectionError(f"Could not fetch client configuration: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        logger.info(f"Fetched client configuration from {config_url}")
        return cls(ClientConfig.from_mapping(data), **kwargs)

    def configure(self, config: ClientConfig | Mapping[str, Any]) -> None:
        """Set up the command system and the message stream from config.

        The command system is set up once; later calls only replace the
        message stream.
        """
        if not isinstance(config, ClientConfig):
            config = ClientConfig.from_mapping(config)

        self.config = config
        server = config.server

        if server.command_center is not None:
            invoker = self.invoker
            if invoker is None:
                self.scheduler = CommandScheduler(
                    self.bus, server.command_center, transport=self._transport
                )
                invoker = self.invoker = CommandInvoker(self.scheduler)
            invoker.register_all(server.command_center.commands)

        if self.delivery.setup_message_stream(server.msg_stream, self._capabilities):
            self._follow_session()

    def _follow_session(self) -> None:
        """Restart the message stream whenever the session key changes."""
        if self._session_unsubscribers:
            return

        def on_session_set(_path: str, session: Any) -> None:
            self.delivery.set_session_key(_session_key_of(session))
            self.delivery.start()

        def on_session_unset(_path: str, _payload: Any) -> None:
            self.delivery.abort()

        self._session_unsubscribers = [
            self.bus.subscribe(SESSION_SET, on_session_set),
            self.bus.subscribe(SESSION_UNSET, on_session_unset),
        ]

    @property
    def is_development_mode(self) -> bool:
        return bool(self.config and self.config.development_mode)

    def _require_scheduler(self) -> CommandScheduler:
        if self.scheduler is None:
            raise NotConfiguredError("The command system has not yet been set up")
        return self.scheduler

    def _require_invoker(self) -> CommandInvoker:
        if self.invoker is None:
            raise NotConfiguredError("The command system has not yet been set up")
        return self.invoker

    # =========================================================================
    # Commands
    # =========================================================================

    def send_command(
        self,
        name: str,
        params: Mapping[str, Any] | None = None,
        callback: CommandCallback | None = None,
    ) -> Command | None:
        return self._require_scheduler().send_command(name, params, callback)

    def call(
        self, name: str, *args: Any, callback: CommandCallback | None = None, **kwargs: Any
    ) -> Command | None:
        """Send a declared command, binding arguments to its parameter names."""
        return self._require_invoker().invoke(name, *args, callback=callback, **kwargs)

    def module(self, name: str) -> ModuleCommands:
        return self._require_invoker().module(name)

    def queue(self, fn: Callable[[], T]) -> T:
        return self._require_scheduler().queue(fn)

    def piggyback(self, fn: Callable[[], T]) -> T:
        return self._require_scheduler().piggyback(fn)

    def resend(self) -> None:
        self._require_scheduler().resend()

    def discard(self) -> None:
        self._require_scheduler().discard()

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, path: str, listener: EventListener) -> Callable[[], None]:
        return self.bus.subscribe(path, listener)

    async def close(self) -> None:
        """Stop the message stream and release transports."""
        for unsubscribe in self._session_unsubscribers:
            unsubscribe()
        self._session_unsubscribers = []

        await self.delivery.aclose()

        if self.scheduler is not None:
            aclose = getattr(self.scheduler.transport, "aclose", None)
            if aclose is not None:
                await aclose()

    async def __aenter__(self) -> CourierClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
