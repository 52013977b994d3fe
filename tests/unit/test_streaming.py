"""Unit tests for the HTTP polling message streams."""

from __future__ import annotations

import asyncio

import pytest

from courier_client.config import StreamTransportConfig
from courier_client.errors import ErrorKind
from courier_client.streams import (
    CONNECT,
    DELIVERY,
    DISCONNECT,
    ERROR,
    LongPollingStream,
    ShortPollingStream,
)
from courier_client.transport import HttpRequestTransport, MockRequestTransport

URL = "https://example.com/msgstream"


class LeakyTransport(MockRequestTransport):
    """Transport whose abort does not stop a late response from arriving."""

    def abort(self) -> None:
        self.abort_count += 1


class StreamEvents:
    def __init__(self, stream) -> None:
        self.events: list[tuple[str, object]] = []
        for name in (DELIVERY, ERROR, CONNECT, DISCONNECT):
            stream.on(name, lambda path, payload: self.events.append((path, payload)))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list[object]:
        return [payload for n, payload in self.events if n == name]


def make_stream(cls=LongPollingStream, transport=None, **config):
    config.setdefault("url", URL)
    transport = transport or MockRequestTransport()
    stream = cls(StreamTransportConfig(**config), transport=transport)
    return stream, transport


async def settle(seconds: float = 0.02) -> None:
    await asyncio.sleep(seconds)


# =============================================================================
# Request shape
# =============================================================================


class TestPollRequests:
    """Tests for the poll request parameters."""

    @pytest.mark.asyncio
    async def test_first_long_poll_is_short(self) -> None:
        """The first long poll probes with a short poll, later ones long poll."""
        stream, transport = make_stream()

        stream.start()

        assert transport.last_request.method == "GET"
        assert transport.last_request.url == URL
        assert transport.last_request.params == {"transport": "shortpolling"}

        transport.respond(None, {})
        await settle()

        assert transport.last_request.params == {"transport": "longpolling"}
        stream.abort()

    @pytest.mark.asyncio
    async def test_short_poll_transport_name(self) -> None:
        stream, transport = make_stream(ShortPollingStream)

        stream.start()

        assert transport.last_request.params == {"transport": "shortpolling"}
        stream.abort()

    @pytest.mark.asyncio
    async def test_session_key_and_confirm_ids(self) -> None:
        stream, transport = make_stream()
        stream.set_session_key("s3cret")
        stream.confirm(3)
        stream.confirm("4")

        stream.start()

        assert transport.last_request.params == {
            "transport": "shortpolling",
            "sessionKey": "s3cret",
            "confirmIds": "3,4",
        }
        stream.abort()

    @pytest.mark.asyncio
    async def test_confirm_ids_cleared_after_success(self) -> None:
        stream, transport = make_stream()
        stream.confirm(3)
        stream.start()

        transport.respond(None, {})
        await settle()

        assert "confirmIds" not in transport.last_request.params
        assert stream.get_unconfirmed() == []
        stream.abort()

    @pytest.mark.asyncio
    async def test_confirm_ids_kept_after_error(self) -> None:
        stream, transport = make_stream(after_error_interval=0)
        stream.confirm(3)
        stream.start()

        transport.respond(ErrorKind.NETWORK)
        await settle()

        assert transport.last_request.params["confirmIds"] == "3"
        stream.abort()


# =============================================================================
# Responses
# =============================================================================


class TestPollResponses:
    """Tests for delivery and connection state."""

    @pytest.mark.asyncio
    async def test_delivery_and_connect(self) -> None:
        stream, transport = make_stream()
        events = StreamEvents(stream)

        stream.start()
        transport.respond(None, {"1": [["a.one", 1]]})

        assert events.events == [(DELIVERY, {"1": [["a.one", 1]]}), (CONNECT, None)]
        assert stream.is_connected
        stream.abort()

    @pytest.mark.asyncio
    async def test_empty_text_response_is_not_delivered(self) -> None:
        stream, transport = make_stream()
        events = StreamEvents(stream)

        stream.start()
        transport.respond(None, None)

        assert events.names == [CONNECT]
        stream.abort()

    @pytest.mark.asyncio
    async def test_error_disconnects_and_probes_short(self) -> None:
        """After an error the next poll is a short poll after the error interval."""
        stream, transport = make_stream(after_request_interval=0, after_error_interval=10)
        events = StreamEvents(stream)

        stream.start()
        transport.respond(None, None)
        await settle()
        assert transport.last_request.params["transport"] == "longpolling"

        transport.respond(ErrorKind.MAINTENANCE, "down")

        assert events.names == [CONNECT, ERROR, DISCONNECT]
        assert events.payloads(ERROR) == [{"error": ErrorKind.MAINTENANCE, "data": "down"}]
        assert not stream.is_connected

        await settle(0.05)

        assert len(transport.requests) == 3
        assert transport.last_request.params["transport"] == "shortpolling"
        stream.abort()

    @pytest.mark.asyncio
    async def test_short_poll_waits_for_interval(self) -> None:
        stream, transport = make_stream(ShortPollingStream, after_request_interval=50)

        stream.start()
        transport.respond(None, {})
        await settle(0.01)

        assert len(transport.requests) == 1

        await settle(0.1)

        assert len(transport.requests) == 2
        stream.abort()

    @pytest.mark.asyncio
    async def test_busy_transport_reports_error(self) -> None:
        transport = MockRequestTransport()
        transport.send("GET", "https://example.com/elsewhere")
        stream, _ = make_stream(transport=transport)
        events = StreamEvents(stream)

        stream.start()

        assert events.payloads(ERROR) == [{"error": ErrorKind.BUSY, "data": None}]
        stream.abort()


# =============================================================================
# Lifecycle
# =============================================================================


class TestPollLifecycle:
    """Tests for start, restart and abort."""

    @pytest.mark.asyncio
    async def test_abort_stops_everything(self) -> None:
        stream, transport = make_stream(LongPollingStream, transport=LeakyTransport())
        events = StreamEvents(stream)

        stream.start()
        stream.abort()
        transport.respond(None, {"1": [["late"]]})
        await settle()

        assert events.events == []
        assert len(transport.requests) == 1
        assert not stream.is_running

    @pytest.mark.asyncio
    async def test_abort_cancels_scheduled_poll(self) -> None:
        stream, transport = make_stream(after_error_interval=10)

        stream.start()
        transport.respond(ErrorKind.NETWORK)
        stream.abort()
        await settle(0.05)

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_restart_while_running(self) -> None:
        stream, transport = make_stream()
        stream.start()

        stream.start()
        await settle()

        assert transport.abort_count == 1
        assert len(transport.requests) == 2
        assert stream.is_running
        stream.abort()

    @pytest.mark.asyncio
    async def test_resume_after_abort(self) -> None:
        stream, transport = make_stream()
        stream.start()
        stream.abort()

        stream.start()

        assert len(transport.requests) == 2
        assert transport.last_request.params == {"transport": "shortpolling"}
        stream.abort()

    def test_destroy_drops_listeners(self) -> None:
        stream, _ = make_stream()
        StreamEvents(stream)

        stream.destroy()

        assert stream.events.listener_count(DELIVERY) == 0


class TestPollConfig:
    """Tests for interval defaults and transport selection."""

    def test_default_intervals(self) -> None:
        long_poll, _ = make_stream(LongPollingStream)
        short_poll, _ = make_stream(ShortPollingStream)

        assert long_poll.after_request_interval == 0.0
        assert short_poll.after_request_interval == 5.0
        assert long_poll.after_error_interval == 5.0

    def test_configured_intervals_are_milliseconds(self) -> None:
        stream, _ = make_stream(after_request_interval=250, after_error_interval=1500)

        assert stream.after_request_interval == 0.25
        assert stream.after_error_interval == 1.5

    def test_default_transport_skips_caches(self) -> None:
        stream = LongPollingStream(StreamTransportConfig(url=URL))

        assert isinstance(stream.transport, HttpRequestTransport)
        assert stream.transport.options.no_cache

    def test_availability_needs_url(self) -> None:
        assert LongPollingStream.is_available(StreamTransportConfig(url=URL))
        assert not LongPollingStream.is_available(StreamTransportConfig())
