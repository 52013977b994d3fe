"""Request transport abstraction.

A request transport performs one HTTP-style request at a time and reports
the outcome through a callback as ``(error_kind, response)``. The command
scheduler and the polling message streams both sit on top of it.

Architecture:
- RequestTransport is the PROTOCOL (interface) every implementation follows
- HttpRequestTransport talks to a real server through httpx
- MockRequestTransport records requests and lets tests answer them
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..errors import ErrorKind

# Callback receiving (error_kind or None, parsed response)
ResponseCallback = Callable[[ErrorKind | None, Any], None]


@dataclass
class HttpTransportOptions:
    """Configuration for request transports."""

    # Add a random query parameter to defeat intermediate caches
    no_cache: bool = False

    # Seconds before an outstanding request fails with a network error
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout < 1.0:
            raise ValueError(f"Unreasonable timeout setting for HTTP request: {self.timeout}s")


@runtime_checkable
class RequestTransport(Protocol):
    """Protocol for request transports.

    All transports must implement:
    - send: Issue a request, report the outcome through the callback
    - abort: Cancel the outstanding request without calling back
    - is_busy: Whether a request is outstanding
    """

    @property
    def is_busy(self) -> bool:
        """Check if a request is outstanding."""
        ...

    def send(
        self,
        method: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        callback: ResponseCallback | None = None,
    ) -> bool:
        """Issue a request.

        Returns:
            False without calling back if a request is already outstanding,
            True otherwise

        Raises:
            TypeError: If an argument has the wrong type
        """
        ...

    def abort(self) -> None:
        """Cancel the outstanding request. The callback is never invoked."""
        ...


def validate_request(
    method: Any, url: Any, params: Any, headers: Any, callback: Any = None
) -> None:
    """Check send() arguments, raising TypeError on the first mismatch."""
    if not isinstance(method, str):
        raise TypeError(f"method is not a string: {method!r}")
    if not isinstance(url, str):
        raise TypeError(f"url is not a string: {url!r}")
    if params is not None and not isinstance(params, Mapping):
        raise TypeError(f"params is not a mapping: {params!r}")
    if headers is not None and not isinstance(headers, Mapping):
        raise TypeError(f"headers is not a mapping: {headers!r}")
    if callback is not None and not callable(callback):
        raise TypeError(f"callback is not callable: {callback!r}")
