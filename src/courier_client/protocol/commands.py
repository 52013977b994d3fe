"""Command definitions for the protocol layer.

Commands are the request side of the protocol. Each command:
- Has a dot-namespaced `name` identifying the operation ("module.command")
- Has `params` serialized to JSON text the moment it is created
- May carry file attachments, referenced from params as "__fileN"
- May carry a callback, invoked with ``(error_code, result)``

Several commands are sent together as one batch; responses come back
positionally aligned with the batch order.
"""

from __future__ import annotations

import io
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

# Callback invoked with (error_code,) on failure or (None, result) on success
CommandCallback = Callable[..., Any]

# Command hook: joined command bodies in, optional header entry out
HookFunction = Callable[[str], dict[str, Any] | None]

# Form field that carries the header + params blob in multipart requests
CMDDATA_FIELD = "cmddata"


class CommandMode(str, Enum):
    """What the scheduler does with a command issued while a batch is in flight."""

    FREE = "free"  # queue it for the next batch
    BLOCKING = "blocking"  # reject it with a busy error


@dataclass(frozen=True)
class Upload:
    """A file attached to a command.

    Content is read eagerly so that the command stays immutable and a resend
    transmits the same bytes.
    """

    content: bytes
    filename: str = "upload"
    content_type: str = "application/octet-stream"

    @classmethod
    def wrap(cls, value: Any) -> Upload | None:
        """Turn a file-like value into an Upload.

        Accepts Upload, bytes, bytearray, memoryview and binary file objects.
        Returns None for anything else.
        """
        if isinstance(value, Upload):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls(content=bytes(value))
        if isinstance(value, io.IOBase) and not isinstance(value, io.TextIOBase):
            name = getattr(value, "name", None)
            filename = name.rsplit("/", 1)[-1] if isinstance(name, str) else "upload"
            return cls(content=value.read(), filename=filename)
        return None

    def as_httpx_file(self) -> tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


class ParamsEncoder:
    """Serializes command params, extracting attachments as it goes.

    The id counter is owned by the caller so that ids keep counting up across
    all commands of one batch.
    """

    def __init__(self, next_file_id: Callable[[], int]) -> None:
        self._next_file_id = next_file_id
        self.attachments: dict[str, Upload] = {}

    def _default(self, value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")

        upload = Upload.wrap(value)
        if upload is not None:
            return self._register(upload)

        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

    def _register(self, upload: Upload) -> str:
        file_id = f"__file{self._next_file_id()}"
        self.attachments[file_id] = upload
        return file_id

    def encode(self, params: Mapping[str, Any] | BaseModel | None) -> str:
        # Absent params serialize to an empty body line
        if params is None:
            return ""
        if isinstance(params, BaseModel):
            params = params.model_dump(mode="json")
        return dumps(params, default=self._default)


def dumps(value: Any, **kwargs: Any) -> str:
    """Compact JSON, matching what the backend emits and expects."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, **kwargs)


@dataclass(frozen=True)
class Command:
    """A command queued for the next batch.

    Example:
        Command(name="user.login", params='{"username":"bob"}')
    """

    name: str
    params: str
    attachments: dict[str, Upload] | None = None
    callback: CommandCallback | None = field(default=None, compare=False)

    @property
    def module(self) -> str:
        return self.name.split(".", 1)[0]


def validate_command(name: Any, params: Any, callback: Any) -> None:
    """Check send_command arguments.

    Raises:
        TypeError: If an argument has the wrong type
        ValueError: If the name is not a dot-namespaced command name
    """
    if not isinstance(name, str):
        raise TypeError(f"Command name is not a string: {name!r}")
    if not name or any(not part for part in name.split(".")):
        raise ValueError(f"Command name is not a valid namespaced name: {name!r}")

    if params is not None and not isinstance(params, (Mapping, BaseModel)):
        raise TypeError(f"Command params is not a mapping: {params!r}")

    if callback is not None and not callable(callback):
        raise TypeError(f"Command callback is not callable: {callback!r}")


@dataclass
class CommandHook:
    """A named pre-send transform producing an optional header entry."""

    name: str
    fn: HookFunction


@dataclass(frozen=True)
class MultipartBody:
    """Request body for batches that carry attachments."""

    fields: dict[str, str]
    files: dict[str, Upload]


@dataclass(frozen=True)
class PreparedBatch:
    """The exact request issued for an in-flight batch.

    Kept so that a resend reissues byte-identical wire content.
    """

    commands: tuple[Command, ...]
    url: str
    params: dict[str, Any]
    body: str | MultipartBody
    query_id: int | None = None

    @property
    def names(self) -> list[str]:
        return [cmd.name for cmd in self.commands]


@dataclass(frozen=True)
class ResponseEnvelope:
    """One element of a batch response: ``[errorCode?, result?, events?]``."""

    error_code: Any = None
    result: Any = None
    events: list[Any] | None = None

    @property
    def ok(self) -> bool:
        return not self.error_code

    @classmethod
    def from_wire(cls, item: Any) -> ResponseEnvelope:
        """Parse a positional response element.

        Raises:
            ValueError: If the element is not a list
        """
        if item is None:
            return cls()
        if not isinstance(item, (list, tuple)):
            raise ValueError(f"Response element is not a list: {item!r}")

        error_code = item[0] if len(item) > 0 else None
        result = item[1] if len(item) > 1 else None
        events = item[2] if len(item) > 2 else None
        return cls(error_code=error_code, result=result, events=events or None)
