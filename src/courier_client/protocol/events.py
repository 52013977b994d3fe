"""Event paths and payloads published by the command path.

Everything the scheduler reports goes through the bus under the ``io``
namespace. Subscribing to ``io.error`` catches every failure kind.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, InstanceOf

from .commands import Command

# =============================================================================
# Command Lifecycle Events
# =============================================================================

IO = "io"
IO_QUEUED = "io.queued"  # payload: command names waiting for the next tick
IO_SEND = "io.send"  # payload: list of command names in the batch
IO_RESPONSE = "io.response"
IO_RESEND = "io.resend"
IO_DISCARDED = "io.discarded"

# =============================================================================
# Error Events
# =============================================================================

IO_ERROR = "io.error"


def io_error(kind: str) -> str:
    """Path for a transport error of the given kind (e.g., "io.error.network")."""
    return f"{IO_ERROR}.{kind}"


def io_command(name: str) -> str:
    """Path for the success event of a command (e.g., "io.user.login")."""
    return f"{IO}.{name}"


class TransportErrorProps(BaseModel):
    """A batch failed to go out or came back unusable, and is parked."""

    reason: str
    info: Any = None


class BusyErrorProps(BaseModel):
    """A command was rejected because a blocking batch is in flight."""

    reason: str = "busy"
    command: InstanceOf[Command]
    blocked_by: list[InstanceOf[Command]]


class CommandSucceededProps(BaseModel):
    """A command in a batch completed without an error code."""

    result: Any = None
    params: str
