"""Courier client - runtime for command-and-event backends.

Sends application commands as batched, correlated requests and rebuilds an
ordered stream of server-pushed events over long polling, short polling or
WebSocket transports.

Main entry points:
- CourierClient: Top-level client owning everything below
- CommandScheduler: Batching, one request in flight, response routing
- DeliveryReconstructor: Sequence-ordered release of pushed message packs
- EventBus: Hierarchical pub/sub every result and event is published on
"""

from .bus import EventBus
from .client import CourierClient
from .config import (
    ClientConfig,
    CommandCenterConfig,
    CommandSpec,
    MessageStreamConfig,
    ServerConfig,
    StreamTransportConfig,
)
from .delivery import DeliveryReconstructor
from .errors import CourierError, ErrorKind, NotConfiguredError
from .invoker import CommandInvoker, ModuleCommands
from .protocol import Command, CommandMode, Upload
from .scheduler import CommandScheduler
from .streams import (
    LongPollingStream,
    MessageStream,
    ShortPollingStream,
    StreamCapabilities,
    WebSocketStream,
    create_stream,
)
from .transport import HttpRequestTransport, MockRequestTransport, RequestTransport

__all__ = [
    # Client
    "CourierClient",
    "EventBus",
    # Configuration
    "ClientConfig",
    "CommandCenterConfig",
    "CommandSpec",
    "MessageStreamConfig",
    "ServerConfig",
    "StreamTransportConfig",
    # Commands
    "CommandScheduler",
    "CommandInvoker",
    "ModuleCommands",
    "Command",
    "CommandMode",
    "Upload",
    # Delivery
    "DeliveryReconstructor",
    "MessageStream",
    "LongPollingStream",
    "ShortPollingStream",
    "WebSocketStream",
    "StreamCapabilities",
    "create_stream",
    # Transports
    "RequestTransport",
    "HttpRequestTransport",
    "MockRequestTransport",
    # Errors
    "CourierError",
    "ErrorKind",
    "NotConfiguredError",
]
