"""Wire protocol layer.

Defines the command batch format, the batch response format and the pushed
message pack format shared by every transport.

Key concepts:
- Commands: dot-namespaced requests, batched and sent in one request
- Responses: positional ``[errorCode?, result?, events?]`` per command
- Message packs: events pushed by the server, keyed by sequence id
"""

from .commands import (
    CMDDATA_FIELD,
    Command,
    CommandCallback,
    CommandHook,
    CommandMode,
    MultipartBody,
    ParamsEncoder,
    PreparedBatch,
    ResponseEnvelope,
    Upload,
    validate_command,
)
from .events import BusyErrorProps, CommandSucceededProps, TransportErrorProps
from .messages import UNORDERED, PushEvent, parse_events, parse_message_id

__all__ = [
    "CMDDATA_FIELD",
    "Command",
    "CommandCallback",
    "CommandHook",
    "CommandMode",
    "MultipartBody",
    "ParamsEncoder",
    "PreparedBatch",
    "ResponseEnvelope",
    "Upload",
    "validate_command",
    "BusyErrorProps",
    "CommandSucceededProps",
    "TransportErrorProps",
    "UNORDERED",
    "PushEvent",
    "parse_events",
    "parse_message_id",
]
