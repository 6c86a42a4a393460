"""Dispatcher - Drives one logical request through adapt, send, classify, retry.

The control flow lives in a single generator, DispatchEngine.flow(). It never
performs I/O itself: it yields an operation (Adapt, Send, DecideRetry) and is
resumed with that operation's result, or has the operation's exception thrown
back into it. Three drivers run the same flow:

    run()        blocking, on the calling thread
    run_async()  direct-suspend, awaiting httpx.AsyncClient and async interceptor hooks
    submit()     future chaining on a worker pool; each operation is its own
                 task and the next one is issued from the previous task's
                 done-callback (backs both the callback and the future styles)

Classification and retry rules are therefore identical across styles:

    2xx                        -> return body bytes
    other status               -> UnderlyingError      -> retry decision
    SessionFailedError         -> retry decision
    InvalidHTTPResponseError   -> terminal, interceptor not consulted
    no interceptor             -> failure is terminal
    RETRY                      -> re-adapt and re-send the ORIGINAL request
    DO_NOT_RETRY               -> the classified failure is terminal
"""

from __future__ import annotations

from concurrent.futures import Executor, Future, InvalidStateError
from dataclasses import dataclass
from typing import Any, Generator, Union

import httpx

from http_relay.errors import (
    InvalidHTTPResponseError,
    OtherError,
    RelayError,
    SessionFailedError,
    UnderlyingError,
)
from http_relay.interceptor import Interceptor
from http_relay.models import LogLevel, RetryDecision, WireRequest
from http_relay.network_logger import NetworkLogger
from http_relay.transport import TransportClient


# =============================================================================
# Operations yielded by the flow
# =============================================================================


@dataclass(frozen=True)
class Adapt:
    request: WireRequest


@dataclass(frozen=True)
class Send:
    request: WireRequest


@dataclass(frozen=True)
class DecideRetry:
    request: WireRequest
    error: RelayError


Operation = Union[Adapt, Send, DecideRetry]
Flow = Generator[Operation, Any, bytes]


class DispatchEngine:
    """Dispatches wire requests with interceptor-driven retries.

    The transport and interceptor are shared by concurrent dispatches; each
    dispatch owns its own flow generator and request.
    """

    def __init__(
        self,
        transport: TransportClient,
        interceptor: Interceptor | None = None,
        network_logger: NetworkLogger | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._transport = transport
        self._interceptor = interceptor
        self._logger = network_logger or NetworkLogger(LogLevel.OFF)
        self._max_retries = max_retries

    @property
    def interceptor(self) -> Interceptor | None:
        return self._interceptor

    def flow(self, request: WireRequest) -> Flow:
        """The dispatch state machine for one request.

        Yields operations for a driver to perform; returns the 2xx body bytes.
        """
        retries = 0
        while True:
            outgoing = request
            if self._interceptor is not None:
                outgoing = yield from self._guarded(Adapt(request))

            self._logger.log_request(outgoing, self._transport.merged_headers(outgoing))

            try:
                response = yield Send(outgoing)
            except SessionFailedError as e:
                self._logger.log_response(None, None, e)
                failure: RelayError = e
            except InvalidHTTPResponseError as e:
                self._logger.log_response(None, None, e)
                raise
            else:
                if response.is_success:
                    self._logger.log_response(response, response.content)
                    return response.content
                failure = UnderlyingError(response)
                self._logger.log_response(response, response.content, failure)

            if self._interceptor is None:
                raise failure
            if self._max_retries is not None and retries >= self._max_retries:
                raise failure

            decision = yield from self._guarded(DecideRetry(request, failure))
            if decision != RetryDecision.RETRY:
                raise failure
            retries += 1

    @staticmethod
    def _guarded(operation: Operation) -> Generator[Operation, Any, Any]:
        """Yield an interceptor operation; its non-relay failures become OtherError."""
        try:
            return (yield operation)
        except RelayError:
            raise
        except Exception as e:
            raise OtherError(e) from e

    # =========================================================================
    # Operation performers
    # =========================================================================

    def _perform(self, operation: Operation) -> Any:
        if isinstance(operation, Send):
            return self._transport.send(operation.request)
        assert self._interceptor is not None
        if isinstance(operation, Adapt):
            return self._interceptor.adapt(operation.request)
        return self._interceptor.retry(operation.request, operation.error)

    async def _perform_async(self, operation: Operation, session: httpx.AsyncClient) -> Any:
        if isinstance(operation, Send):
            return await self._transport.send_async(operation.request, session)
        assert self._interceptor is not None
        if isinstance(operation, Adapt):
            return await self._interceptor.adapt_async(operation.request)
        return await self._interceptor.retry_async(operation.request, operation.error)

    # =========================================================================
    # Drivers
    # =========================================================================

    def run(self, request: WireRequest) -> bytes:
        """Dispatch on the calling thread, blocking until a terminal outcome."""
        flow = self.flow(request)
        result: Any = None
        error: Exception | None = None
        while True:
            try:
                operation = flow.throw(error) if error is not None else flow.send(result)
            except StopIteration as stop:
                return stop.value

            result, error = None, None
            try:
                result = self._perform(operation)
            except Exception as e:
                error = e

    async def run_async(self, request: WireRequest) -> bytes:
        """Dispatch by suspending the calling task at each I/O point.

        Every attempt of the dispatch shares one async session, closed when
        the dispatch ends or the task is cancelled.
        """
        flow = self.flow(request)
        result: Any = None
        error: Exception | None = None
        async with self._transport.async_session() as session:
            while True:
                try:
                    operation = flow.throw(error) if error is not None else flow.send(result)
                except StopIteration as stop:
                    return stop.value

                result, error = None, None
                try:
                    result = await self._perform_async(operation, session)
                except Exception as e:
                    error = e

    def submit(self, request: WireRequest, executor: Executor) -> Future[bytes]:
        """Dispatch on a worker pool; the returned future resolves to the body bytes.

        Cancelling the returned future stops further operations from being
        issued. An operation already running completes with no observer.
        """
        outer: Future[bytes] = Future()
        flow = self.flow(request)

        def advance(result: Any = None, error: Exception | None = None) -> None:
            if outer.cancelled():
                flow.close()
                return
            try:
                operation = flow.throw(error) if error is not None else flow.send(result)
                step = executor.submit(self._perform, operation)
            except StopIteration as stop:
                resolve_future(outer, result=stop.value)
                return
            except Exception as e:
                resolve_future(outer, error=e)
                return
            step.add_done_callback(on_step_done)

        def on_step_done(step: Future[Any]) -> None:
            if step.cancelled():
                outer.cancel()
                flow.close()
                return
            error = step.exception()
            if error is not None:
                advance(error=error)  # type: ignore[arg-type]
            else:
                advance(result=step.result())

        advance()
        return outer


def resolve_future(future: Future[Any], result: Any = None, error: BaseException | None = None) -> None:
    """Complete a future unless the caller already cancelled it."""
    try:
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)
    except InvalidStateError:
        # Cancelled by the caller: the outcome has no observer.
        return
