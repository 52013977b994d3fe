"""Command scheduler.

Coalesces commands issued within one event loop tick into a single batch
request, keeps at most one batch in flight, and routes the positional
response back to the per-command callbacks and to the event bus.

Lifecycle of a batch:

    send_command() -> current batch -> (next tick) in flight -> response
                                                   |
                                   transport error: parked until
                                   resend() or discard()

While a batch is in flight the scheduler is locked. Commands issued then are
queued for the next batch (free mode, or inside ``queue()``), or rejected
with an ``io.error.busy`` event (blocking mode). Commands issued inside
``piggyback()`` join the current batch without triggering a send.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import BaseModel

from .bus import EventBus
from .config import CommandCenterConfig
from .errors import ErrorKind
from .protocol import events as io
from .protocol.commands import (
    CMDDATA_FIELD,
    Command,
    CommandCallback,
    CommandHook,
    CommandMode,
    HookFunction,
    MultipartBody,
    ParamsEncoder,
    PreparedBatch,
    ResponseEnvelope,
    Upload,
    dumps,
    validate_command,
)
from .transport import HttpTransportOptions, RequestTransport, create_transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Characters encodeURI leaves alone
_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


class CommandScheduler:
    """Batches commands and sends them one batch at a time.

    Usage:
        scheduler = CommandScheduler(bus, CommandCenterConfig(url="https://example.com/cmd"))
        scheduler.send_command("user.login", {"username": "bob"}, on_login)
        scheduler.send_command("inbox.list", None, on_inbox)  # same batch
    """

    def __init__(
        self,
        bus: EventBus,
        config: CommandCenterConfig,
        transport: RequestTransport | None = None,
    ):
        self.bus = bus
        self.config = config
        self._transport = transport or create_transport(
            "http", HttpTransportOptions(timeout=config.timeout)
        )

        self.mode = CommandMode(config.mode)
        self.query_id = 0
        self._hooks: list[CommandHook] = []

        self._current: list[Command] = []

        # Commands taken off current; prepared stays None if a hook failed
        self._in_flight: tuple[Command, ...] = ()
        self._prepared: PreparedBatch | None = None

        # A send is scheduled for the next tick; current may still grow
        self._flush_handle: asyncio.Handle | None = None

        # Send current the moment the in-flight request returns
        self._streaming = False
        self._locked = False

        self._queueing = False
        self._piggybacking = False
        self._next_file_id = 0

        self._simulated_transport_error: ErrorKind | None = None
        self._simulated_command_error: tuple[str, Any] | None = None

    @property
    def transport(self) -> RequestTransport:
        return self._transport

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def current(self) -> list[Command]:
        """Commands waiting for the next batch."""
        return list(self._current)

    @property
    def in_flight(self) -> list[Command]:
        """Commands of the batch that was sent and awaits a response."""
        return list(self._in_flight)

    def set_mode(self, mode: CommandMode | str) -> None:
        """Switch between free and blocking mode.

        Raises:
            ValueError: If the mode is not recognized
        """
        try:
            self.mode = CommandMode(mode)
        except ValueError:
            raise ValueError(
                f'Unrecognized command mode "{mode}", use "free" or "blocking".'
            ) from None

    # =========================================================================
    # Command hooks
    # =========================================================================

    def register_command_hook(self, name: str, fn: HookFunction) -> None:
        """Register a hook, replacing (in place) any hook of the same name."""
        for hook in self._hooks:
            if hook.name == name:
                hook.fn = fn
                return

        self._hooks.append(CommandHook(name=name, fn=fn))

    def unregister_command_hook(self, name: str) -> None:
        for i, hook in enumerate(self._hooks):
            if hook.name == name:
                del self._hooks[i]
                return

    @property
    def hook_names(self) -> list[str]:
        return [hook.name for hook in self._hooks]

    # =========================================================================
    # Issuing commands
    # =========================================================================

    def send_command(
        self,
        name: str,
        params: Mapping[str, Any] | BaseModel | None = None,
        callback: CommandCallback | None = None,
    ) -> Command | None:
        """Queue a command for sending.

        Params are serialized immediately; mutating them afterwards has no
        effect on the command. File-like values are sent as attachments.

        Returns:
            The queued command, or None if it was rejected as busy

        Raises:
            TypeError: If an argument has the wrong type
            ValueError: If the name is not a dot-namespaced command name
        """
        validate_command(name, params, callback)

        encoder = ParamsEncoder(self._allocate_file_id)
        serialized = encoder.encode(params)

        command = Command(
            name=name,
            params=serialized,
            attachments=encoder.attachments or None,
            callback=callback,
        )

        if self._piggybacking:
            # The next batch that gets scheduled takes it along
            self._current.append(command)
        elif self._locked:
            if self._queueing or self.mode == CommandMode.FREE:
                self._current.append(command)
                self._request_flush()
            else:
                logger.warning(f"Could not execute command {name}: busy")
                self.bus.publish(
                    io.io_error(ErrorKind.BUSY.value),
                    io.BusyErrorProps(command=command, blocked_by=self.in_flight),
                )
                return None
        else:
            self._current.append(command)
            self._request_flush()

        return command

    def _allocate_file_id(self) -> int:
        file_id = self._next_file_id
        self._next_file_id += 1
        return file_id

    @contextlib.contextmanager
    def queueing(self) -> Iterator[None]:
        """Commands issued inside the block are queued even while locked."""
        self._queueing = True
        try:
            yield
        finally:
            self._queueing = False

    @contextlib.contextmanager
    def piggybacking(self) -> Iterator[None]:
        """Commands issued inside the block join the current batch without a send."""
        self._piggybacking = True
        try:
            yield
        finally:
            self._piggybacking = False

    def queue(self, fn: Callable[[], T]) -> T:
        """Run fn with queueing enabled."""
        with self.queueing():
            return fn()

    def piggyback(self, fn: Callable[[], T]) -> T:
        """Run fn with piggybacking enabled."""
        with self.piggybacking():
            return fn()

    # =========================================================================
    # Sending batches
    # =========================================================================

    def _request_flush(self) -> None:
        self._streaming = True

        if self._locked:
            # Unlocking calls us again
            return

        if self._flush_handle is None:
            self._flush_handle = asyncio.get_running_loop().call_soon(self._send_current_batch)
            self.bus.publish(io.IO_QUEUED, [cmd.name for cmd in self._current])

    def _send_current_batch(self) -> None:
        self._flush_handle = None

        batch = tuple(self._current)
        self._current = []

        # A later command may turn streaming on again
        self._streaming = False

        self._next_file_id = 0
        self._locked = True
        self._in_flight = batch
        self._prepared = None
        self._prepare_and_issue()

    def _prepare_and_issue(self) -> None:
        try:
            self._prepared = self._prepare_batch(self._in_flight)
        except Exception as e:
            # The batch stays parked until resend() or discard()
            names = [cmd.name for cmd in self._in_flight]
            logger.exception(f"Command hook failed for batch {names}")
            self.bus.publish(
                io.io_error(ErrorKind.HOOK.value),
                io.TransportErrorProps(reason=ErrorKind.HOOK.value, info=str(e)),
            )
            return

        self._issue(self._prepared)

    def _prepare_batch(self, batch: tuple[Command, ...]) -> PreparedBatch:
        names = [cmd.name for cmd in batch]
        data = "\n".join(cmd.params for cmd in batch)

        header: list[dict[str, Any]] = []
        for hook in self._hooks:
            output = hook.fn(data)
            if output:
                header.append({**output, "name": hook.name})

        body_text = dumps(header) + "\n" + data

        params: dict[str, Any] = {}
        query_id: int | None = None
        if any(cmd.callback is not None for cmd in batch):
            self.query_id += 1
            query_id = self.query_id
            params["queryId"] = query_id

        files: dict[str, Upload] = {}
        for cmd in batch:
            if cmd.attachments:
                files.update(cmd.attachments)

        body: str | MultipartBody = body_text
        if files:
            body = MultipartBody(fields={CMDDATA_FIELD: body_text}, files=files)

        return PreparedBatch(
            commands=batch,
            url=quote(f"{self.config.url}/{','.join(names)}", safe=_URI_SAFE),
            params=params,
            body=body,
            query_id=query_id,
        )

    def _issue(self, prepared: PreparedBatch) -> None:
        self.bus.publish(io.IO_SEND, prepared.names)
        logger.debug(f"Sending batch {prepared.names} (queryId={prepared.query_id})")

        sent = self._transport.send(
            "POST",
            prepared.url,
            prepared.params,
            prepared.body,
            None,
            self._on_command_response,
        )
        if not sent:
            # The batch stays parked until resend() or discard()
            self._on_command_response(ErrorKind.BUSY, None)

    def _unlock(self) -> None:
        self._in_flight = ()
        self._prepared = None
        self._locked = False

        if self._current and self._streaming:
            self._request_flush()

    # =========================================================================
    # Responses
    # =========================================================================

    def _on_command_response(self, error: ErrorKind | None, response: Any) -> None:
        if self._simulated_transport_error is not None:
            error = self._simulated_transport_error
            self._simulated_transport_error = None

        if error is None and not isinstance(response, list):
            logger.warning(f"Unexpected command response: {response!r}")
            error = ErrorKind.SERVER

        if error is not None:
            kind = error.value if isinstance(error, ErrorKind) else str(error)
            logger.warning(f"Command batch failed: {kind}")
            self.bus.publish(
                io.io_error(kind),
                io.TransportErrorProps(reason=kind, info=response),
            )
            return

        batch = self.in_flight

        # Unlock first so commands issued from callbacks start a new batch
        self._unlock()

        self.bus.publish(io.IO_RESPONSE)

        for i, item in enumerate(response):
            if i >= len(batch):
                logger.warning(f"No command found for response {item!r}")
                continue

            command = batch[i]
            try:
                envelope = ResponseEnvelope.from_wire(item)
            except ValueError as e:
                logger.warning(f"Skipping response for {command.name}: {e}")
                continue

            envelope = self._apply_simulated_command_error(command, envelope)
            self._handle_command_response(command, envelope)

    def _handle_command_response(self, command: Command, envelope: ResponseEnvelope) -> None:
        if envelope.events:
            self.bus.publish_many(envelope.events)

        if envelope.ok:
            self.bus.publish(
                io.io_command(command.name),
                io.CommandSucceededProps(result=envelope.result, params=command.params),
            )

        if command.callback is None:
            return

        try:
            if envelope.ok:
                command.callback(None, envelope.result)
            else:
                command.callback(envelope.error_code)
        except Exception:
            logger.exception(f"Error in callback for command {command.name}")

    # =========================================================================
    # Recovery
    # =========================================================================

    def resend(self) -> None:
        """Reissue the parked batch exactly as it was first sent.

        A batch whose hooks failed is prepared again from its commands.
        """
        if not self._in_flight:
            logger.warning("No commands to retry. Discarding instead.")
            self.discard()
            return

        self.bus.publish(io.IO_RESEND)

        if self._prepared is None:
            self._prepare_and_issue()
        else:
            self._issue(self._prepared)

    def discard(self) -> None:
        """Drop the parked batch without retrying and unlock."""
        self._transport.abort()
        self._unlock()
        self.bus.publish(io.IO_DISCARDED)

    # =========================================================================
    # Testing aids
    # =========================================================================

    def simulate_transport_error(self, kind: ErrorKind | str) -> None:
        """Make the next batch response fail with a transport error."""
        self._simulated_transport_error = ErrorKind(kind)

    def simulate_command_error(self, name: str, error: Any) -> None:
        """Make the next response for the named command fail with an error code."""
        self._simulated_command_error = (name, error)

    def _apply_simulated_command_error(
        self, command: Command, envelope: ResponseEnvelope
    ) -> ResponseEnvelope:
        if self._simulated_command_error and self._simulated_command_error[0] == command.name:
            error = self._simulated_command_error[1]
            self._simulated_command_error = None
            return ResponseEnvelope(error_code=error)
        return envelope
