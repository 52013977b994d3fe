"""Message stream transports.

Provides interchangeable ways of receiving server-pushed message packs:
- longpolling - HTTP request held open until there is something to deliver
- shortpolling - HTTP request at a fixed interval
- websocket - persistent socket, confirmations sent as text frames

The factory picks the first configured transport that is usable, so the
client can switch transports without code changes.
"""

from __future__ import annotations

import logging

from ..config import MessageStreamConfig
from .base import (
    CONNECT,
    DELIVERY,
    DISCONNECT,
    ERROR,
    MessageStream,
    SocketConnect,
    StreamCapabilities,
)
from .polling import HttpPollingStream, LongPollingStream, ShortPollingStream
from .websocket import WebSocketStream, normalize_socket_url

logger = logging.getLogger(__name__)

STREAM_TYPES: dict[str, type[MessageStream]] = {
    LongPollingStream.name: LongPollingStream,
    ShortPollingStream.name: ShortPollingStream,
    WebSocketStream.name: WebSocketStream,
}


def create_stream(
    config: MessageStreamConfig,
    capabilities: StreamCapabilities | None = None,
) -> MessageStream | None:
    """Create a message stream from the first usable transport in ``config.detect``.

    Args:
        config: Transport preference order and per-transport settings
        capabilities: Injected request transport factory / socket connect

    Returns:
        The stream, or None if no transport is usable
    """
    for type_name in config.detect:
        stream_cls = STREAM_TYPES.get(type_name)
        if stream_cls is None:
            logger.info(f"Unrecognized transport type: {type_name} (skipping)")
            continue

        transport_config = config.transport_config(type_name)
        if stream_cls.is_available(transport_config):
            logger.debug(f"Using {type_name} message stream")
            return stream_cls.create(transport_config, capabilities)

    logger.warning(f"Could not create any transport out of: {config.detect}")
    return None


__all__ = [
    "CONNECT",
    "DELIVERY",
    "DISCONNECT",
    "ERROR",
    "MessageStream",
    "SocketConnect",
    "StreamCapabilities",
    "HttpPollingStream",
    "LongPollingStream",
    "ShortPollingStream",
    "WebSocketStream",
    "normalize_socket_url",
    "STREAM_TYPES",
    "create_stream",
]
