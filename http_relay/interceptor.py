"""Interceptor - Caller-supplied request adaptation and retry policy.

Subclass Interceptor and override what you need:

    class TokenRefresher(Interceptor):
        def __init__(self, tokens):
            self._tokens = tokens

        def adapt(self, request):
            return request.with_header("Authorization", f"Bearer {self._tokens.current()}")

        def retry(self, request, error):
            if isinstance(error, UnderlyingError) and error.status_code == 401:
                self._tokens.refresh()
                return RetryDecision.RETRY
            return RetryDecision.DO_NOT_RETRY

The blocking methods serve the callback and future styles (they run on the
client's worker threads). The async methods serve send_async; by default they
run the blocking ones in a worker thread (asyncio.to_thread), so one override
covers every style without stalling the event loop. Override the async
methods as well when the hook itself should await I/O instead.

One interceptor instance is shared by concurrent dispatches. adapt must be
idempotent: it is re-applied to the original request before every attempt.
There is no built-in retry limit; an interceptor that always answers RETRY
retries forever unless ClientConfig.max_retries is set.
"""

from __future__ import annotations

import asyncio

from http_relay.models import RetryDecision, WireRequest


class Interceptor:
    """Default interceptor: identity adaptation, never retries."""

    def adapt(self, request: WireRequest) -> WireRequest:
        return request

    def retry(self, request: WireRequest, error: Exception) -> RetryDecision:
        return RetryDecision.DO_NOT_RETRY

    async def adapt_async(self, request: WireRequest) -> WireRequest:
        return await asyncio.to_thread(self.adapt, request)

    async def retry_async(self, request: WireRequest, error: Exception) -> RetryDecision:
        return await asyncio.to_thread(self.retry, request, error)
