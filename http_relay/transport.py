"""Transport - Thin facade over httpx that performs the actual network I/O.

The transport knows nothing about retries or status classification. It sends
one WireRequest and returns a TransportResponse, or raises:

    InvalidHTTPResponseError  the server produced nothing interpretable as HTTP
    SessionFailedError        any other transport-level failure

One TransportClient is shared by every in-flight dispatch. The sync
httpx.Client lives as long as the TransportClient. Async sends go through an
httpx.AsyncClient opened per dispatch (see async_session), because its
connections belong to the event loop that opened them.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from http_relay.errors import InvalidHTTPResponseError, SessionFailedError
from http_relay.models import CachePolicy, ClientConfig, TransportResponse, WireRequest

# Request headers that express each cache policy. httpx keeps no HTTP cache,
# so the policy is forwarded to the server and any intermediaries.
CACHE_POLICY_HEADERS: dict[CachePolicy, dict[str, str]] = {
    CachePolicy.USE_PROTOCOL_CACHE_POLICY: {},
    CachePolicy.RELOAD_IGNORING_LOCAL_CACHE_DATA: {
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    },
    CachePolicy.RETURN_CACHE_DATA_ELSE_LOAD: {"Cache-Control": "max-stale"},
    CachePolicy.RETURN_CACHE_DATA_DONT_LOAD: {"Cache-Control": "only-if-cached"},
}


class TransportClient:
    """Sends wire requests over httpx.

    Usage:
        with TransportClient(config) as transport:
            response = transport.send(wire_request)

        async with transport.async_session() as session:
            response = await transport.send_async(wire_request, session)

    Tests may inject httpx transports (e.g., httpx.MockTransport) instead of
    opening real connections. An injected async transport is never closed
    here; its owner closes it.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._async_transport = async_transport
        self._client = httpx.Client(**self._build_client_kwargs(config, transport))

    def __enter__(self) -> TransportClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the sync client. Async sessions close when their dispatch ends."""
        self._client.close()

    @staticmethod
    def _build_client_kwargs(config: ClientConfig, transport: Any) -> dict[str, Any]:
        """Build kwargs shared by httpx.Client and httpx.AsyncClient."""
        headers = dict(CACHE_POLICY_HEADERS[config.cache_policy])
        headers.update(config.headers)

        kwargs: dict[str, Any] = {
            "headers": headers,
            "timeout": config.timeout,
        }
        if transport is not None:
            kwargs["transport"] = transport
        return kwargs

    def merged_headers(self, request: WireRequest) -> dict[str, str]:
        """Headers as they go on the wire: client defaults overlaid by the request's own.

        Default header names are lowercase (httpx normalizes them); Host and
        Content-Length are added later by httpx and are not included.
        """
        headers = {
            key: value
            for key, value in self._client.headers.multi_items()
            if request.header(key) is None
        }
        headers.update(request.headers)
        return headers

    def send(self, request: WireRequest) -> TransportResponse:
        """Send a request and wait for the full response.

        Raises:
            InvalidHTTPResponseError: If no interpretable HTTP response was received.
            SessionFailedError: On connection, timeout or other transport failures.
        """
        start_time = time.perf_counter()
        try:
            response = self._client.request(
                method=request.method,
                url=request.url,
                headers=request.headers or None,
                content=request.body,
            )
        except httpx.RemoteProtocolError as e:
            raise InvalidHTTPResponseError(f"Invalid HTTP response from {request.url}: {e}") from e
        except httpx.TransportError as e:
            raise SessionFailedError(f"Request to {request.url} failed: {e}", e) from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        return self._convert_response(response, elapsed_ms)

    @asynccontextmanager
    async def async_session(self) -> AsyncIterator[httpx.AsyncClient]:
        """Open an httpx.AsyncClient on the running event loop, closed on exit.

        One session spans one dispatch, so retries reuse its connections.
        """
        client = httpx.AsyncClient(**self._build_client_kwargs(self._config, self._async_transport))
        try:
            yield client
        finally:
            if self._async_transport is None:
                await client.aclose()

    async def send_async(
        self,
        request: WireRequest,
        session: httpx.AsyncClient | None = None,
    ) -> TransportResponse:
        """Async counterpart of send().

        Without a session, a one-shot session is opened for this request.
        """
        if session is None:
            async with self.async_session() as one_shot:
                return await self.send_async(request, one_shot)

        start_time = time.perf_counter()
        try:
            response = await session.request(
                method=request.method,
                url=request.url,
                headers=request.headers or None,
                content=request.body,
            )
        except httpx.RemoteProtocolError as e:
            raise InvalidHTTPResponseError(f"Invalid HTTP response from {request.url}: {e}") from e
        except httpx.TransportError as e:
            raise SessionFailedError(f"Request to {request.url} failed: {e}", e) from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        return self._convert_response(response, elapsed_ms)

    @staticmethod
    def _convert_response(response: httpx.Response, elapsed_ms: float) -> TransportResponse:
        """Convert an httpx Response to a TransportResponse."""
        if not isinstance(response.status_code, int):
            raise InvalidHTTPResponseError("Response carries no HTTP status code")

        # Headers - lowercase keys, list values
        headers: dict[str, list[str]] = {}
        for key, value in response.headers.multi_items():
            headers.setdefault(key.lower(), []).append(value)

        return TransportResponse(
            status_code=response.status_code,
            headers=headers,
            content=response.content,
            url=str(response.url),
            elapsed_ms=elapsed_ms,
            http_version=response.http_version,
        )
