"""Request transport layer.

Provides the one-request-at-a-time capability the command scheduler and the
polling message streams are built on:
- HttpRequestTransport - httpx based, for real servers
- MockRequestTransport - in-memory, for tests

Transports are looked up by type name so configuration can select them.
"""

from typing import Any

from .base import HttpTransportOptions, RequestTransport, ResponseCallback, validate_request
from .http import HttpRequestTransport
from .mock import MockRequestTransport, RecordedRequest

TRANSPORT_TYPES: dict[str, type] = {
    "http": HttpRequestTransport,
}


def create_transport(type_name: str, options: HttpTransportOptions | None = None) -> Any:
    """Create a request transport by type name.

    Raises:
        ValueError: If no transport type has that name
    """
    transport_cls = TRANSPORT_TYPES.get(type_name)
    if transport_cls is None:
        raise ValueError(f'No transport type "{type_name}" found.')
    return transport_cls(options)


__all__ = [
    "HttpTransportOptions",
    "RequestTransport",
    "ResponseCallback",
    "validate_request",
    "HttpRequestTransport",
    "MockRequestTransport",
    "RecordedRequest",
    "TRANSPORT_TYPES",
    "create_transport",
]
