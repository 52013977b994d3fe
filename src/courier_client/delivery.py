"""Ordered delivery of pushed message packs.

Message packs can arrive out of order, more than once, or over a different
transport than the previous one. The reconstructor buffers them by sequence
id and publishes their events strictly in sequence:

    add_messages({2: [...], 1: [...]})  ->  expected_id = 1
    release_ready()                     ->  publishes 1, then 2; expected_id = 3

Sequence id 0 holds unordered events; it is published on every release
regardless of gaps. A new session key discards everything still buffered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from .bus import EventBus
from .config import MessageStreamConfig
from .errors import NotConfiguredError
from .protocol.messages import UNORDERED, PushEvent, parse_events, parse_message_id
from .streams import DELIVERY, ERROR, MessageStream, StreamCapabilities, create_stream

logger = logging.getLogger(__name__)


class DeliveryReconstructor:
    """Buffers pushed message packs and releases them in sequence."""

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.stream: MessageStream | None = None
        self.session_key: str | None = None

        self._pending: dict[int, list[PushEvent]] = {}
        self.expected_id: int | None = None

        # Highest sequence id released so far, for dropping redeliveries
        self._released_through: int | None = None

        self._closing: set[asyncio.Task[None]] = set()

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    def add_messages(self, messages: Mapping[Any, Any] | None) -> None:
        """Buffer message packs for release.

        Every id is confirmed, even when its pack is malformed. A malformed
        pack is logged and buffered as empty so later sequence ids are not
        held back by it.

        Raises:
            TypeError: If messages is not a mapping
        """
        if not messages:
            return

        if not isinstance(messages, Mapping):
            raise TypeError(f"Messages passed must be a mapping, got {type(messages).__name__}")

        for key, raw_events in messages.items():
            # Tell the stream it may confirm this pack as delivered
            if self.stream is not None and self.stream.supports_confirmation:
                self.stream.confirm(key)

            try:
                msg_id = parse_message_id(key)
            except ValueError as e:
                logger.warning(f"Skipping message pack: {e}")
                continue

            try:
                events = parse_events(raw_events)
            except ValueError as e:
                logger.warning(f"Skipping events of message pack {msg_id}: {e}")
                events = []

            if (
                msg_id != UNORDERED
                and self._released_through is not None
                and msg_id <= self._released_through
            ):
                logger.debug(f"Dropping redelivered message pack {msg_id}")
                continue

            self._pending[msg_id] = events

            # Expect the lowest id first
            if msg_id != UNORDERED and (self.expected_id is None or msg_id < self.expected_id):
                self.expected_id = msg_id

    def release_ready(self) -> None:
        """Publish every pack that can go out without leaving a gap, then bucket 0."""
        while self.expected_id is not None and self.expected_id in self._pending:
            # Advance first so a raising listener cannot make us expect an old id
            msg_id = self.expected_id
            self.expected_id += 1
            self._released_through = msg_id

            self._publish(msg_id)

        if UNORDERED in self._pending:
            self._publish(UNORDERED)

    def _publish(self, msg_id: int) -> None:
        events = self._pending.pop(msg_id, None)
        if events:
            self.bus.publish_many(events)

    def reset(self) -> None:
        """Forget all buffered packs. Required after a session key change."""
        self._pending = {}
        self.expected_id = None
        self._released_through = None

    # =========================================================================
    # Stream management
    # =========================================================================

    def setup_message_stream(
        self,
        config: MessageStreamConfig | None,
        capabilities: StreamCapabilities | None = None,
    ) -> bool:
        """Replace the message stream with one built from config.

        Ids the previous stream had not confirmed yet are handed over to the
        new one.

        Returns:
            True if a stream was set up, False otherwise
        """
        if not config:
            return False

        confirm_ids: list[str] = []

        if self.stream is not None:
            confirm_ids = self.stream.get_unconfirmed()
            self._retire(self.stream)
            self.stream = None

        stream = create_stream(config, capabilities)
        if stream is None:
            return False

        self.attach_stream(stream)

        for msg_id in confirm_ids:
            stream.confirm(msg_id)

        return True

    def _retire(self, stream: MessageStream) -> None:
        stream.destroy()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        # Connections are released in the background; aclose() waits for them
        task = loop.create_task(stream.aclose())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def attach_stream(self, stream: MessageStream) -> None:
        """Use an already constructed stream."""
        stream.on(ERROR, self._on_stream_error)
        stream.on(DELIVERY, self._on_delivery)

        if self.session_key:
            stream.set_session_key(self.session_key)

        self.stream = stream

    def _on_stream_error(self, _path: str, info: Any) -> None:
        logger.warning(f"Error from message stream transport: {info}")

    def _on_delivery(self, _path: str, messages: Any) -> None:
        try:
            self.add_messages(messages)
            self.release_ready()
        except TypeError as e:
            logger.error(f"Error during message stream event emission: {e}")

    def set_session_key(self, session_key: str | None) -> None:
        """Set the session key, discarding buffered packs if it changed.

        Raises:
            NotConfiguredError: If no message stream has been set up
        """
        if self.stream is None:
            raise NotConfiguredError("The message stream has not yet been set up")

        if session_key != self.session_key:
            self.reset()
            self.session_key = session_key

        self.stream.set_session_key(session_key)

    def start(self) -> None:
        """Start or resume (after abort()) the stream connection.

        Raises:
            NotConfiguredError: If no message stream has been set up
        """
        if self.stream is None:
            raise NotConfiguredError("The message stream has not yet been set up")

        self.stream.start()

    def abort(self) -> None:
        """Stop the stream connection. It can be resumed with start()."""
        if self.stream is not None:
            self.stream.abort()

    def destroy(self) -> None:
        if self.stream is not None:
            self.stream.destroy()
            self.stream = None

    async def aclose(self) -> None:
        """Destroy the stream and wait until every replaced stream is closed."""
        stream, self.stream = self.stream, None
        if stream is not None:
            await stream.aclose()

        if self._closing:
            await asyncio.gather(*self._closing)
