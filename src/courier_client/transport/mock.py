"""Mock request transport for testing.

Records every request and leaves it outstanding until the test answers it
with ``respond()``. No I/O, no event loop required.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import ErrorKind
from .base import ResponseCallback, validate_request


@dataclass
class RecordedRequest:
    """A request sent through MockRequestTransport."""

    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class MockRequestTransport:
    """Mock transport for testing.

    Usage:
        transport = MockRequestTransport()
        scheduler = CommandScheduler(bus, config, transport=transport)
        scheduler.send_command("user.login", {"name": "bob"}, cb)
        await asyncio.sleep(0)

        assert transport.last_request.url.endswith("/user.login")
        transport.respond(None, [[None, {"ok": True}]])
    """

    def __init__(self) -> None:
        self._recorded: list[RecordedRequest] = []
        self._callback: ResponseCallback | None = None
        self._sending = False
        self.abort_count = 0

    @property
    def is_busy(self) -> bool:
        return self._sending

    @property
    def requests(self) -> list[RecordedRequest]:
        """Get all requests sent through this transport."""
        return self._recorded.copy()

    @property
    def last_request(self) -> RecordedRequest | None:
        return self._recorded[-1] if self._recorded else None

    def send(
        self,
        method: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        callback: ResponseCallback | None = None,
    ) -> bool:
        """Record the request and keep it outstanding."""
        validate_request(method, url, params, headers, callback)

        if self._sending:
            return False

        self._sending = True
        self._callback = callback
        self._recorded.append(
            RecordedRequest(
                method=method,
                url=url,
                params=dict(params or {}),
                body=body,
                headers=dict(headers or {}),
            )
        )
        return True

    def respond(self, error: ErrorKind | str | None, response: Any = None) -> None:
        """Complete the outstanding request.

        Raises:
            RuntimeError: If no request is outstanding
        """
        if not self._sending:
            raise RuntimeError("No outstanding request to respond to")

        self._sending = False
        callback = self._callback
        self._callback = None

        if isinstance(error, str) and not isinstance(error, ErrorKind):
            error = ErrorKind(error)

        if callback is not None:
            callback(error, response)

    def abort(self) -> None:
        self._callback = None
        self._sending = False
        self.abort_count += 1

    def clear(self) -> None:
        """Forget recorded requests."""
        self._recorded.clear()
