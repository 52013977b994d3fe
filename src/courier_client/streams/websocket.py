"""WebSocket message stream.

Receives message packs as JSON text frames and confirms them with a single
comma-joined text frame of ids. Reconnects on its own after every close:
quickly after a normal close, slowly (and with an ``error`` event) after a
close code signalling a failure (>= 1002).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Coroutine
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import StreamTransportConfig
from .base import (
    DELIVERY,
    ERROR,
    MessageStream,
    SocketConnect,
    StreamCapabilities,
    ms_to_seconds,
)

logger = logging.getLogger(__name__)

WEBSOCKET = "websocket"

# Close codes from here up signal an error
ERROR_CLOSE_CODE = 1002

_ABSOLUTE_URL = re.compile(r"^(https?|wss?)://", re.IGNORECASE)


def normalize_socket_url(url: str, origin: str | None = None) -> str:
    """Turn an http(s) url, or a path relative to origin, into a ws(s) url.

    Raises:
        ValueError: If url is a bare path and no origin is given
    """
    if not _ABSOLUTE_URL.match(url):
        if not origin:
            raise ValueError(f"Cannot resolve socket path {url!r} without an origin")
        if not url.startswith("/"):
            url = "/" + url
        url = origin.rstrip("/") + url

    return re.sub(r"^http", "ws", url, flags=re.IGNORECASE)


def with_session_key(url: str, session_key: str | None) -> str:
    if not session_key:
        return url
    splitter = "&" if "?" in url else "?"
    return f"{url}{splitter}{urlencode({'sessionKey': session_key})}"


class WebSocketStream(MessageStream):
    """Message stream over a WebSocket connection.

    Usage:
        stream = WebSocketStream(StreamTransportConfig(url="https://example.com/msgstream"))
        stream.on("delivery", lambda _, packs: ...)
        stream.set_session_key("abc")
        stream.start()  # connects to wss://example.com/msgstream?sessionKey=abc
    """

    name = WEBSOCKET
    default_after_request_interval = 100
    default_after_error_interval = 5000

    def __init__(self, config: StreamTransportConfig, connect: SocketConnect | None = None):
        super().__init__(config)
        self._connect = connect or websockets.connect
        self._endpoint = normalize_socket_url(config.url or "", config.origin)
        self._ws: Any = None  # websockets ClientConnection
        self._is_open = False
        self._task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[Any]] = set()

        # Zero falls back to the default, never to an immediate reconnect
        self.after_request_interval = ms_to_seconds(
            config.after_request_interval or None, self.default_after_request_interval
        )
        self.after_error_interval = ms_to_seconds(
            config.after_error_interval or None, self.default_after_error_interval
        )

    @classmethod
    def is_available(cls, config: StreamTransportConfig) -> bool:
        if not config.url:
            return False
        return bool(_ABSOLUTE_URL.match(config.url) or config.origin)

    @classmethod
    def create(
        cls, config: StreamTransportConfig, capabilities: StreamCapabilities | None = None
    ) -> WebSocketStream:
        return cls(config, connect=capabilities.connect if capabilities else None)

    @property
    def url(self) -> str:
        """Connection url including the session key."""
        return with_session_key(self._endpoint, self._session_key)

    @property
    def is_open(self) -> bool:
        return self._is_open

    def start(self) -> bool:
        # Restart, since setup has probably changed
        self.abort()

        self.is_running = True
        self._task = asyncio.get_running_loop().create_task(self._run(self.url))
        return True

    def abort(self) -> None:
        self.is_running = False

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        if self._task is not None:
            self._task.cancel()
            self._task = None

        ws = self._ws
        self._ws = None
        self._is_open = False
        self.is_connected = False

        if ws is not None:
            self._spawn(ws.close())

    async def aclose(self) -> None:
        task = self._task
        self.destroy()

        pending = [t for t in (task, *self._background) if t is not None]
        if pending:
            await asyncio.wait(pending)

    def confirm(self, msg_id: int | str) -> None:
        super().confirm(msg_id)

        if self._ws is not None and self._is_open:
            self._flush_confirmations()

    async def _run(self, url: str) -> None:
        try:
            ws = await self._connect(url)
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning(f"WebSocket connection to {url} failed: {e}")
            self._emit(ERROR, {"error": e, "data": None})
            self._attempt_reconnect(self.after_error_interval)
            return

        self._ws = ws
        self._is_open = True
        self.is_connected = True
        logger.debug(f"WebSocket connected to {url}")

        self._flush_confirmations()

        try:
            async for message in ws:
                self._on_message(message)
        except ConnectionClosed:
            pass
        finally:
            if self._ws is ws:
                self._ws = None
                self._is_open = False
                self.is_connected = False

        self._on_close(ws.close_code, ws.close_reason)

    def _on_message(self, message: str | bytes) -> None:
        if not self.is_running:
            return

        try:
            packs = json.loads(message)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid message from server: {e}")
            self._emit(ERROR, {"error": e, "data": message})
            return

        if not isinstance(packs, dict):
            self._emit(ERROR, {"error": "Message is not an object", "data": packs})
            return

        for msg_id in self._confirm_ids:
            packs.pop(msg_id, None)

        self._emit(DELIVERY, packs)

    def _on_close(self, code: int | None, reason: str | None) -> None:
        if not self.is_running:
            return

        if code is not None and code >= ERROR_CLOSE_CODE:
            logger.warning(f"WebSocket closed with code {code}: {reason}")
            self._emit(ERROR, {"error": code, "data": reason})
            self._attempt_reconnect(self.after_error_interval)
        else:
            self._attempt_reconnect(self.after_request_interval)

    def _attempt_reconnect(self, interval: float) -> None:
        self._task = None
        self._reconnect_handle = asyncio.get_running_loop().call_later(interval, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self.is_running:
            self.start()

    def _flush_confirmations(self) -> None:
        if not self._confirm_ids:
            return

        ids = self._confirm_ids
        self._confirm_ids = []
        self._spawn(self._send_confirmations(self._ws, ids))

    async def _send_confirmations(self, ws: Any, ids: list[str]) -> None:
        try:
            await ws.send(",".join(ids))
        except ConnectionClosed:
            # Keep them for the next connection
            logger.debug(f"Connection closed before confirming {ids}")
            self._confirm_ids = ids + self._confirm_ids

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
