"""Event Bus - hierarchical pub/sub for everything the client surfaces.

Paths are dot-separated. Publishing ``io.error.network`` notifies the
listeners of ``io.error.network``, then ``io.error``, then ``io``.
Wildcard subscribers see every publication once.

Every listener receives ``(path, payload)`` where ``path`` is the full path
that was published, regardless of which prefix it subscribed to.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from typing import Any

logger = logging.getLogger(__name__)

# Type for event listeners
EventListener = Callable[[str, Any], None]


def parse_path(path: str | Sequence[str]) -> list[str]:
    """Split an event path into its segments.

    Raises:
        ValueError: If the path is empty
        TypeError: If the path is neither a string nor a sequence of strings
    """
    if isinstance(path, str):
        if not path:
            raise ValueError("An empty path is not a valid event path")
        return path.split(".")

    if isinstance(path, (list, tuple)):
        if not path:
            raise ValueError("An empty path is not a valid event path")
        return list(path)

    raise TypeError("An event path must be a non-empty sequence or a string")


def path_family(path: str | Sequence[str]) -> list[str]:
    """Return the path and all of its ancestors, longest first."""
    segments = parse_path(path)
    return [".".join(segments[:i]) for i in range(len(segments), 0, -1)]


class EventBus:
    """Hierarchical event bus.

    Instances are independent; nothing is shared at module level. Components
    compose a bus rather than inherit from one.
    """

    WILDCARD = "*"

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[EventListener]] = {}

    def subscribe(self, path: str, listener: EventListener) -> Callable[[], None]:
        """Subscribe to a path and all of its descendants.

        Args:
            path: Dot-separated path (e.g., "io.error"), or "*" for everything
            listener: Called with ``(full_path, payload)``

        Returns:
            Unsubscribe function
        """
        key = path if path == self.WILDCARD else ".".join(parse_path(path))
        self._subscriptions.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._subscriptions.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def subscribe_all(self, listener: EventListener) -> Callable[[], None]:
        """Subscribe to every publication."""
        return self.subscribe(self.WILDCARD, listener)

    def once(self, path: str, listener: EventListener) -> Callable[[], None]:
        """Subscribe for a single publication."""

        def wrapper(full_path: str, payload: Any) -> None:
            unsubscribe()
            listener(full_path, payload)

        unsubscribe = self.subscribe(path, wrapper)
        return unsubscribe

    def publish(self, path: str, payload: Any = None) -> None:
        """Publish a payload on a path.

        Listeners that raise are logged and skipped; the remaining listeners
        are still notified.
        """
        for key in path_family(path):
            self._notify(key, path, payload)

        self._notify(self.WILDCARD, path, payload)

    def publish_many(self, events: Iterable[Sequence[Any] | None]) -> None:
        """Publish a list of ``[path, payload]`` pairs in order.

        Empty entries are skipped and a missing payload is published as None.
        """
        for event in events:
            if not event:
                continue
            self.publish(event[0], event[1] if len(event) > 1 else None)

    def _notify(self, key: str, path: str, payload: Any) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._subscriptions.get(key, ())):
            try:
                listener(path, payload)
            except Exception:
                logger.exception(f"Error in listener for {path} (subscribed to {key})")

    def listener_count(self, path: str) -> int:
        """Number of listeners registered directly on a path."""
        return len(self._subscriptions.get(path, ()))

    def clear(self) -> None:
        """Remove every listener."""
        self._subscriptions = {}

    async def stream(self, path: str = WILDCARD) -> AsyncIterator[tuple[str, Any]]:
        """Async iterator over publications on a path.

        Usage:
            async for path, payload in bus.stream("io.error"):
                ...
        """
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

        def on_event(full_path: str, payload: Any) -> None:
            queue.put_nowait((full_path, payload))

        unsubscribe = self.subscribe(path, on_event)

        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
