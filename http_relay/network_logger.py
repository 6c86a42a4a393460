"""Network Logger - Writes request/response traces for each send attempt.

Logging never takes part in control flow: anything raised while formatting or
emitting a record is swallowed so a broken handler cannot fail a dispatch.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from http_relay.models import LogLevel, TransportResponse, WireRequest

logger = logging.getLogger("http_relay")

REDACTED = "***"


def _body_text(body: bytes | None) -> str:
    if body is None:
        return "NO DATA"
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return f"<{len(body)} bytes, not UTF-8>"


class NetworkLogger:
    """Logs each wire request and the response of each attempt.

    Usage:
        network_logger = NetworkLogger(LogLevel.SUMMARY, redact_headers=["Authorization"])
        network_logger.log_request(wire_request)
        network_logger.log_response(response, response.content)
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.VERBOSE,
        redact_headers: Iterable[str] = (),
        target: logging.Logger | None = None,
    ) -> None:
        self.level = level
        self._redact = {name.lower() for name in redact_headers}
        self._logger = target or logger

    def log_request(self, request: WireRequest, headers: Mapping[str, str] | None = None) -> None:
        """Log one outgoing attempt. headers, when given, are the headers as sent."""
        if self.level == LogLevel.OFF:
            return
        try:
            self._logger.info(self._format_request(request, headers))
        except Exception:
            pass

    def log_response(
        self,
        response: TransportResponse | None,
        body: bytes | None,
        error: BaseException | None = None,
    ) -> None:
        if self.level == LogLevel.OFF:
            return
        try:
            message = self._format_response(response, body, error)
            failed = error is not None or response is None or not response.is_success
            self._logger.log(logging.WARNING if failed else logging.INFO, message)
        except Exception:
            pass

    def _format_request(self, request: WireRequest, headers: Mapping[str, str] | None) -> str:
        if headers is None:
            headers = request.headers
        lines = ["----- REQUEST -----", f"  Url: {request.url}", f"  Method: {request.method}"]
        if self.level == LogLevel.VERBOSE:
            if request.body is not None:
                lines.append(f"  Body: {_body_text(request.body)}")
            if headers:
                lines.append("  Headers:")
                for key, value in headers.items():
                    lines.append(f"    {key}: {self._header_value(key, value)}")
        return "\n".join(lines)

    def _format_response(
        self,
        response: TransportResponse | None,
        body: bytes | None,
        error: BaseException | None,
    ) -> str:
        lines = ["----- RESPONSE -----"]
        if response is not None:
            lines.append(f"  Url: {response.url or 'NO URL'}")
            mark = "OK" if response.is_success else "FAILED"
            lines.append(f"  Status Code: {response.status_code} {mark}")
        else:
            lines.append("  Response: NO RESPONSE")
        if self.level == LogLevel.VERBOSE:
            lines.append(f"  Body: {_body_text(body)}")
        lines.append(f"  Error: {error}" if error is not None else "  Error: none")
        return "\n".join(lines)

    def _header_value(self, name: str, value: str) -> str:
        return REDACTED if name.lower() in self._redact else value
