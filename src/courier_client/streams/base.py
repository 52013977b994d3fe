"""Message stream base class.

A message stream receives message packs pushed by the server and reports
them as ``delivery`` events. Every stream variant exposes the same contract:

- start/abort/destroy: Lifecycle (destroy also drops all listeners)
- confirm/get_unconfirmed: Delivery confirmation bookkeeping
- set_session_key: Identify the session the packs belong to
- events: Composed EventBus emitting ``delivery``, ``error`` and, for the
  polling variants, ``connect``/``disconnect``
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..bus import EventBus, EventListener
from ..config import StreamTransportConfig
from ..transport import RequestTransport

logger = logging.getLogger(__name__)

# Stream events
DELIVERY = "delivery"
ERROR = "error"
CONNECT = "connect"
DISCONNECT = "disconnect"

# Opens a socket connection to a url; websockets.connect fits
SocketConnect = Callable[[str], Awaitable[Any]]


@dataclass
class StreamCapabilities:
    """Platform capabilities a stream may need, injected by the embedder.

    None selects the default implementation (httpx transport, websockets).
    """

    request_transport_factory: Callable[[], RequestTransport] | None = None
    connect: SocketConnect | None = None


def ms_to_seconds(value: int | None, default_ms: int) -> float:
    return (default_ms if value is None else value) / 1000.0


class MessageStream(ABC):
    """Base class for message stream transports."""

    name: str = "base"

    # Whether delivered ids should be confirmed back to the server
    supports_confirmation: bool = True

    def __init__(self, config: StreamTransportConfig):
        self.config = config
        self.events = EventBus()
        self.is_running = False
        self.is_connected = False
        self._confirm_ids: list[str] = []
        self._session_key: str | None = None

    @classmethod
    def is_available(cls, config: StreamTransportConfig) -> bool:
        """Check whether this transport can be used with the given config."""
        return bool(config.url)

    @classmethod
    def create(
        cls, config: StreamTransportConfig, capabilities: StreamCapabilities | None = None
    ) -> MessageStream:
        return cls(config)

    @property
    def session_key(self) -> str | None:
        return self._session_key

    def set_session_key(self, key: str | None) -> None:
        self._session_key = key

    def on(self, event: str, listener: EventListener) -> Callable[[], None]:
        """Subscribe to a stream event."""
        return self.events.subscribe(event, listener)

    def confirm(self, msg_id: int | str) -> None:
        """Buffer a message id for confirmation to the server."""
        self._confirm_ids.append(str(msg_id))

    def get_unconfirmed(self) -> list[str]:
        """Ids buffered but not yet sent to the server."""
        return self._confirm_ids.copy()

    @abstractmethod
    def start(self) -> bool:
        """Start, or restart if already running."""

    @abstractmethod
    def abort(self) -> None:
        """Stop. No delivery or error is emitted for work started before."""

    def destroy(self) -> None:
        """Abort and release all listeners."""
        self.abort()
        self.events.clear()

    async def aclose(self) -> None:
        """Destroy and release the connection resources the stream holds."""
        self.destroy()

    def _emit(self, event: str, payload: Any = None) -> None:
        self.events.publish(event, payload)

    def _set_connected(self, connected: bool) -> None:
        if connected == self.is_connected:
            return

        self.is_connected = connected
        logger.debug(f"{self.name} stream {'connected' if connected else 'disconnected'}")
        self._emit(CONNECT if connected else DISCONNECT)
