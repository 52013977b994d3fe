"""Pushed message packs.

The backend pushes a mapping from string-encoded sequence id to an ordered
list of ``[path, payload]`` events:

    {
        "0": [["chat.typing", {"user": "bob"}]],
        "12": [["chat.message", {"text": "hi"}], ["inbox.count", 3]]
    }

Sequence id 0 is the unordered bucket; every other id is released strictly
in order. Packs are validated one at a time so a malformed pack never takes
its siblings down with it.
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

UNORDERED = 0


class PushEvent(NamedTuple):
    """An event inside a message pack."""

    path: str
    payload: Any = None


_id_adapter: TypeAdapter[int] = TypeAdapter(int)
_events_adapter: TypeAdapter[list[list[Any] | None]] = TypeAdapter(list[list[Any] | None])


def parse_message_id(key: Any) -> int:
    """Convert a pack key to its sequence id.

    Raises:
        ValueError: If the key is not a non-negative integer
    """
    try:
        msg_id = _id_adapter.validate_python(key)
    except ValidationError as e:
        raise ValueError(f"Sequence id is not an integer: {key!r}") from e

    if msg_id < 0:
        raise ValueError(f"Sequence id must be non-negative: {msg_id}")

    return msg_id


def parse_events(events: Any) -> list[PushEvent]:
    """Validate the event list of a single pack.

    Events are read as ``[path, payload, ...]``; anything after the payload
    is ignored. Events without a string path are logged and skipped.

    Raises:
        ValueError: If the pack is not a list of events
    """
    try:
        raw = _events_adapter.validate_python(events)
    except ValidationError as e:
        raise ValueError(f"Message pack is not a list of events: {e}") from e

    parsed: list[PushEvent] = []
    for event in raw:
        if not event:
            continue
        if not isinstance(event[0], str):
            logger.warning(f"Skipping pushed event without a path: {event!r}")
            continue
        parsed.append(PushEvent(event[0], event[1] if len(event) > 1 else None))

    return parsed
