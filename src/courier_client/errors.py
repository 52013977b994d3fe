"""Error kinds and exceptions shared across the client runtime."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Batch failure categories.

    Surfaced on the bus as ``io.error.<kind>``. All but HOOK are also
    passed to request transport callbacks.
    """

    NETWORK = "network"  # offline or timed out, resend is the expected recovery
    BUSY = "busy"  # transport or scheduler already occupied
    MAINTENANCE = "maintenance"  # server unavailable (HTTP 503)
    SERVER = "server"  # response could not be understood
    HOOK = "hook"  # a command hook raised while the batch was being prepared


class CourierError(Exception):
    """Base class for client runtime errors."""


class NotConfiguredError(CourierError, RuntimeError):
    """Raised when an operation needs a component that was never set up."""
