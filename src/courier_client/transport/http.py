"""HTTP request transport built on httpx.

Wraps an ``httpx.AsyncClient`` behind the callback-style RequestTransport
contract: ``send()`` returns immediately and the outcome is delivered to the
callback from a background task on the running event loop.

Error mapping:
- HTTP 503: maintenance
- any other non-2xx status, connection failure or timeout: network
- a JSON content type whose body does not parse: server
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import secrets
from collections.abc import Mapping
from typing import Any

import httpx

from ..errors import ErrorKind
from ..protocol.commands import MultipartBody
from .base import HttpTransportOptions, ResponseCallback, validate_request

logger = logging.getLogger(__name__)

_JSON_CONTENT_TYPE = re.compile(r"^[a-z]+/json", re.IGNORECASE)


class HttpRequestTransport:
    """One-request-at-a-time HTTP transport.

    Usage:
        transport = HttpRequestTransport(HttpTransportOptions(timeout=30.0))
        transport.send("GET", "https://example.com/msgstream", {"transport": "shortpolling"},
                       callback=lambda error, response: ...)
    """

    def __init__(
        self,
        options: HttpTransportOptions | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.options = options or HttpTransportOptions()
        self._client = client
        self._owns_client = client is None
        self._callback: ResponseCallback | None = None
        self._sending = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_busy(self) -> bool:
        """Check if a request is outstanding."""
        return self._sending

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client (lazy init for event loop safety)."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.options.timeout))
        return self._client

    def send(
        self,
        method: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        callback: ResponseCallback | None = None,
    ) -> bool:
        """Issue a request on the running event loop."""
        validate_request(method, url, params, headers, callback)

        if self._sending:
            return False

        query = dict(params) if params else {}
        if self.options.no_cache and params is not None:
            query["rand"] = secrets.token_hex(6)

        self._sending = True
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(
            self._perform(method, url, query, body, dict(headers or {}))
        )
        return True

    def abort(self) -> None:
        """Cancel the outstanding request. Useful for long polling."""
        self._callback = None
        self._sending = False

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def aclose(self) -> None:
        """Abort and close the underlying client if we created it."""
        self.abort()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _perform(
        self,
        method: str,
        url: str,
        query: dict[str, Any],
        body: Any,
        headers: dict[str, str],
    ) -> None:
        request_kwargs = self._encode_body(body, headers)

        try:
            response = await self._get_client().request(
                method,
                url,
                params=query or None,
                headers=headers,
                **request_kwargs,
            )
        except httpx.TimeoutException:
            logger.warning(f"HTTP request to {url} timed out")
            self._complete(ErrorKind.NETWORK, None)
            return
        except httpx.HTTPError as e:
            logger.warning(f"HTTP request to {url} failed: {e}")
            self._complete(ErrorKind.NETWORK, None)
            return

        error, payload = self._decode_response(response)
        self._complete(error, payload)

    @staticmethod
    def _encode_body(body: Any, headers: dict[str, str]) -> dict[str, Any]:
        """Translate a request body into httpx keyword arguments."""
        if body is None:
            return {}

        if isinstance(body, MultipartBody):
            return {
                "data": body.fields,
                "files": {name: upload.as_httpx_file() for name, upload in body.files.items()},
            }

        has_content_type = any(key.lower() == "content-type" for key in headers)

        if isinstance(body, (str, bytes)):
            if not has_content_type:
                headers["content-type"] = "text/plain; charset=UTF-8"
            return {"content": body}

        if not has_content_type:
            headers["content-type"] = "application/json"
        return {"content": json.dumps(body)}

    @staticmethod
    def _decode_response(response: httpx.Response) -> tuple[ErrorKind | None, Any]:
        error: ErrorKind | None = None
        payload: Any = None

        if not response.is_success:
            error = ErrorKind.MAINTENANCE if response.status_code == 503 else ErrorKind.NETWORK
            logger.warning(f"HTTP response code {response.status_code} set as error: {error.value}")

        content_type = response.headers.get("content-type", "")
        text = response.text

        if text and content_type:
            if _JSON_CONTENT_TYPE.match(content_type):
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError as e:
                    logger.warning(f"JSON parse error on HTTP response: {e}")
                    error = error or ErrorKind.SERVER
            else:
                payload = text

        return error, payload

    def _complete(self, error: ErrorKind | None, payload: Any) -> None:
        self._sending = False
        self._task = None

        callback = self._callback
        self._callback = None

        if callback is not None:
            callback(error, payload)

    async def __aenter__(self) -> HttpRequestTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
