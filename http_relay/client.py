"""RelayClient - Public entry point for sending described requests.

One client holds the configuration, the shared transport and interceptor,
and a worker pool. Every request can be sent in one of three styles with
identical classification, retry and error semantics:

    value = client.send(descriptor, Model)                       # blocking
    client.send_with_callback(descriptor, Model, on_done)        # callback(Result)
    future = client.send_future(descriptor, Model)               # concurrent.futures.Future
    value = await client.send_async(descriptor, Model)           # asyncio

Passing medias= (and optionally boundary=) sends a multipart/form-data body.
Passing response_type=None skips decoding and returns the raw body bytes.
"""

from __future__ import annotations

from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Any, Callable, Sequence

import httpx

from http_relay.decoder import DEFAULT_DECODER, ResponseDecoder
from http_relay.dispatcher import DispatchEngine, resolve_future
from http_relay.errors import RelayError
from http_relay.interceptor import Interceptor
from http_relay.models import (
    ClientConfig,
    LogLevel,
    MediaPart,
    RequestDescriptor,
    Result,
    WireRequest,
)
from http_relay.network_logger import NetworkLogger
from http_relay.request_builder import RequestBuilder
from http_relay.transport import TransportClient


class RelayClient:
    """HTTP client that builds, dispatches, retries and decodes requests.

    Usage:
        with RelayClient(ClientConfig(base_url="https://api.example.com")) as client:
            user = client.send(RequestDescriptor.get("/users/42"), User)

    Raises:
        InvalidURLError: At construction if the base URL is not absolute http(s).
    """

    def __init__(
        self,
        config: ClientConfig,
        interceptor: Interceptor | None = None,
        decoder: ResponseDecoder | None = None,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._decoder = decoder or DEFAULT_DECODER
        self._builder = RequestBuilder(config.base_url, config.port)
        self._network_logger = NetworkLogger(config.log_level, config.redact_headers)
        self._transport = TransportClient(config, transport, async_transport)
        self._engine = DispatchEngine(
            self._transport,
            interceptor=interceptor,
            network_logger=self._network_logger,
            max_retries=config.max_retries,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="http-relay"
        )

    def __enter__(self) -> RelayClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    def close(self) -> None:
        """Stop the worker pool and close the HTTP client.

        Queued steps are cancelled: their futures end cancelled and their
        callbacks receive a CancelledError. Async sends hold no client
        between dispatches, so nothing async is left open.
        Uses try/finally so the transport is closed even if shutdown raises.
        """
        try:
            self._executor.shutdown(wait=False, cancel_futures=True)
        finally:
            self._transport.close()

    async def aclose(self) -> None:
        """Same as close(), for `async with`."""
        self.close()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def log_level(self) -> LogLevel:
        return self._network_logger.level

    @log_level.setter
    def log_level(self, level: LogLevel) -> None:
        self._network_logger.level = level

    def build(
        self,
        descriptor: RequestDescriptor,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
    ) -> WireRequest:
        """Build the wire request for a descriptor without sending it."""
        return self._builder.build(descriptor, medias, boundary)

    def _decode(self, data: bytes, response_type: Any, decoder: ResponseDecoder | None) -> Any:
        if response_type is None:
            return data
        return (decoder or self._decoder).decode(data, response_type)

    # =========================================================================
    # Blocking
    # =========================================================================

    def send(
        self,
        descriptor: RequestDescriptor,
        response_type: Any = None,
        *,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
        decoder: ResponseDecoder | None = None,
    ) -> Any:
        """Send a request on the calling thread and return the decoded body.

        Raises:
            RelayError: Any terminal error of the taxonomy in http_relay.errors.
        """
        request = self._builder.build(descriptor, medias, boundary)
        data = self._engine.run(request)
        return self._decode(data, response_type, decoder)

    # =========================================================================
    # Future (single value, then complete)
    # =========================================================================

    def send_future(
        self,
        descriptor: RequestDescriptor,
        response_type: Any = None,
        *,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
        decoder: ResponseDecoder | None = None,
    ) -> Future[Any]:
        """Send a request on the worker pool; the future holds the decoded body or the error.

        A URL that fails to build yields an already-failed future.
        """
        decoded: Future[Any] = Future()
        try:
            request = self._builder.build(descriptor, medias, boundary)
        except RelayError as e:
            decoded.set_exception(e)
            return decoded

        raw = self._engine.submit(request, self._executor)

        def on_raw_done(source: Future[bytes]) -> None:
            if source.cancelled():
                decoded.cancel()
                return
            error = source.exception()
            if error is not None:
                resolve_future(decoded, error=error)
                return
            try:
                value = self._decode(source.result(), response_type, decoder)
            except Exception as e:
                resolve_future(decoded, error=e)
                return
            resolve_future(decoded, result=value)

        def on_decoded_done(target: Future[Any]) -> None:
            if target.cancelled():
                raw.cancel()

        raw.add_done_callback(on_raw_done)
        decoded.add_done_callback(on_decoded_done)
        return decoded

    # =========================================================================
    # Callback
    # =========================================================================

    def send_with_callback(
        self,
        descriptor: RequestDescriptor,
        response_type: Any,
        completion: Callable[[Result], None] | None,
        *,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
        decoder: ResponseDecoder | None = None,
    ) -> None:
        """Send a request on the worker pool and report through completion(Result).

        Returns immediately. completion runs exactly once, on a worker thread,
        or on the calling thread when the URL fails to build. If close() cancels
        the dispatch first, completion receives a CancelledError.
        """
        future = self.send_future(
            descriptor, response_type, medias=medias, boundary=boundary, decoder=decoder
        )
        if completion is None:
            return

        def on_done(done: Future[Any]) -> None:
            if done.cancelled():
                completion(Result(error=CancelledError("Dispatch cancelled by client close")))
                return
            error = done.exception()
            if error is not None:
                completion(Result(error=error))
            else:
                completion(Result(value=done.result()))

        future.add_done_callback(on_done)

    # =========================================================================
    # Async (direct suspend)
    # =========================================================================

    async def send_async(
        self,
        descriptor: RequestDescriptor,
        response_type: Any = None,
        *,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
        decoder: ResponseDecoder | None = None,
    ) -> Any:
        """Send a request from a coroutine; suspends at send and retry decisions.

        Cancelling the awaiting task cancels the in-flight request.
        """
        request = self._builder.build(descriptor, medias, boundary)
        data = await self._engine.run_async(request)
        return self._decode(data, response_type, decoder)
