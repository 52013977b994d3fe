"""HTTP polling message streams.

Long polling keeps one request open until the server has something to
deliver; short polling asks at a fixed interval. Both issue at most one
request at a time:

    GET <url>?transport=longpolling&sessionKey=...&confirmIds=3,4

A failed request is followed, after ``after_error_interval``, by a short
poll so that recovery is noticed quickly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import StreamTransportConfig
from ..errors import ErrorKind
from ..transport import HttpRequestTransport, HttpTransportOptions, RequestTransport
from .base import DELIVERY, ERROR, MessageStream, StreamCapabilities, ms_to_seconds

logger = logging.getLogger(__name__)

LONGPOLLING = "longpolling"
SHORTPOLLING = "shortpolling"


class HttpPollingStream(MessageStream):
    """Polling message stream over a request transport."""

    name = "polling"
    default_after_request_interval = 0
    default_after_error_interval = 5000

    def __init__(
        self,
        config: StreamTransportConfig,
        transport: RequestTransport | None = None,
    ):
        super().__init__(config)
        self._transport = transport or HttpRequestTransport(HttpTransportOptions(no_cache=True))
        self._last_error: ErrorKind | None = None
        self._timer: asyncio.Handle | None = None

        self.after_request_interval = ms_to_seconds(
            config.after_request_interval, self.default_after_request_interval
        )
        self.after_error_interval = ms_to_seconds(
            config.after_error_interval, self.default_after_error_interval
        )

    @classmethod
    def create(
        cls, config: StreamTransportConfig, capabilities: StreamCapabilities | None = None
    ) -> HttpPollingStream:
        factory = capabilities.request_transport_factory if capabilities else None
        return cls(config, transport=factory() if factory else None)

    @property
    def transport(self) -> RequestTransport:
        return self._transport

    def start(self) -> bool:
        if self.is_running:
            # Restart, since setup has probably changed
            self._transport.abort()
            self._cancel_timer()
            self._timer = asyncio.get_running_loop().call_soon(self._send)
        else:
            self.is_running = True

            # The first long poll is a short poll to learn right away whether we're connected
            self._send(force_short=self.name == LONGPOLLING)

        return True

    def abort(self) -> None:
        self._transport.abort()
        self._cancel_timer()
        self.is_running = False

    async def aclose(self) -> None:
        self.destroy()

        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _send(self, force_short: bool = False) -> None:
        self._timer = None

        if not self.is_running:
            return

        self._last_error = None

        params: dict[str, Any] = {"transport": SHORTPOLLING if force_short else self.name}
        if self._session_key:
            params["sessionKey"] = self._session_key
        if self._confirm_ids:
            params["confirmIds"] = ",".join(self._confirm_ids)

        url = self.config.url or ""
        if not self._transport.send("GET", url, params, None, None, self._on_done):
            logger.warning(f"{self.name} stream transport is busy")
            self._on_done(ErrorKind.BUSY, None)

    def _on_done(self, error: ErrorKind | None, response: Any) -> None:
        if not self.is_running:
            return

        if error is not None:
            self._last_error = error
            self._emit(ERROR, {"error": error, "data": response})
            self._set_connected(False)
        else:
            self._confirm_ids = []

            if isinstance(response, dict):
                self._emit(DELIVERY, response)

            self._set_connected(True)

        self._schedule_next()

    def _schedule_next(self) -> None:
        if not self.is_running:
            return

        loop = asyncio.get_running_loop()
        if self._last_error is not None:
            # Force short polling to learn when we reconnect
            self._timer = loop.call_later(self.after_error_interval, self._send, True)
        else:
            self._timer = loop.call_later(self.after_request_interval, self._send)


class LongPollingStream(HttpPollingStream):
    name = LONGPOLLING
    default_after_request_interval = 0


class ShortPollingStream(HttpPollingStream):
    name = SHORTPOLLING
    default_after_request_interval = 5000
