"""Error taxonomy for http-relay.

Every error a dispatch can surface derives from RelayError. Which errors are
routed through an interceptor's retry decision:

    InvalidURLError           never sent, never retried
    InvalidHTTPResponseError  sent, no interpretable response, never retried
    SessionFailedError        transport failure, retryable
    UnderlyingError           non-2xx response, retryable
    DecodingFailedError       2xx body did not match the target type, never retried
    OtherError                wraps an upstream cause (e.g., an interceptor failure)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from http_relay.models import TransportResponse


class RelayError(Exception):
    """Base class for http-relay errors."""


class InvalidURLError(RelayError):
    """Raised when base URL, path and query do not form a valid URL."""


class InvalidHTTPResponseError(RelayError):
    """Raised when a request was sent but no interpretable HTTP response came back."""


class SessionFailedError(RelayError):
    """Raised when the transport fails (DNS, connect, timeout, read/write)."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class UnderlyingError(RelayError):
    """Raised when an HTTP response arrives with a status outside 200-299."""

    def __init__(self, response: TransportResponse) -> None:
        super().__init__(f"HTTP {response.status_code} from {response.url}")
        self.response = response

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def body(self) -> bytes:
        return self.response.content


class DecodingFailedError(RelayError):
    """Raised when a 2xx response body cannot be decoded into the target type."""

    def __init__(self, message: str, body: bytes = b"") -> None:
        super().__init__(message)
        self.body = body


class OtherError(RelayError):
    """Wraps an upstream cause that is not itself a RelayError."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.cause = cause
