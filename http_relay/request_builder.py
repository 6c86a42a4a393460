"""Request Builder - Turns a RequestDescriptor into a WireRequest.

Responsibilities:
- URL assembly: scheme and host always come from the configured base URL; the
  descriptor path is appended to the base path and can never replace the host.
- Header application: string values only, sanitized to ASCII.
- Body encoding: JSON, URL-encoded form, or multipart/form-data.

Known lossy path: a JSON or form payload that cannot be turned into a
key/value mapping, or that fails to serialize, is sent with NO body. No error
reaches the caller; a warning is logged instead.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Sequence
from urllib.parse import quote_plus, urlencode

import httpx
from pydantic import BaseModel

from http_relay.errors import InvalidURLError
from http_relay.models import BodyEncoding, MediaPart, RequestDescriptor, WireRequest

logger = logging.getLogger("http_relay")

CRLF = "\r\n"
CONTENT_TYPE = "Content-Type"
JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?' (HTTP header values must be ASCII per RFC 7230)."""
    return value.encode("ascii", errors="replace").decode("ascii")


def make_boundary() -> str:
    """Generate a random multipart boundary."""
    return f"Boundary-{uuid.uuid4().hex}"


def payload_to_mapping(payload: Any) -> dict[str, Any] | None:
    """Convert a body payload to a key/value mapping.

    Returns None when the payload has no mapping form (lists, scalars) or
    cannot be dumped.
    """
    try:
        if isinstance(payload, BaseModel):
            dumped = payload.model_dump(mode="json", by_alias=True)
        elif dataclasses.is_dataclass(payload) and not isinstance(payload, type):
            dumped = dataclasses.asdict(payload)
        elif isinstance(payload, Mapping):
            dumped = dict(payload)
        else:
            return None
    except Exception as e:
        logger.warning("Could not convert %s payload to a mapping: %s", type(payload).__name__, e)
        return None
    return {str(key): value for key, value in dumped.items()}


def stringify_value(value: Any) -> str:
    """Render a field value as text: strings as-is, everything else in JSON spelling."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


class RequestBuilder:
    """Builds WireRequests against one base URL.

    Usage:
        builder = RequestBuilder("https://api.example.com/v1", port=8443)
        wire = builder.build(RequestDescriptor.get("/users", query=[("page", "2")]))
    """

    def __init__(self, base_url: str, port: int | None = None) -> None:
        try:
            self._base = httpx.URL(base_url)
        except httpx.InvalidURL as e:
            raise InvalidURLError(f"Invalid base URL '{base_url}': {e}") from e

        if self._base.scheme not in ("http", "https") or not self._base.host:
            raise InvalidURLError(f"Base URL must be absolute http(s): '{base_url}'")

        self._port = port if port is not None else self._base.port

    @property
    def base_url(self) -> httpx.URL:
        return self._base

    def build(
        self,
        descriptor: RequestDescriptor,
        medias: Sequence[MediaPart] | None = None,
        boundary: str | None = None,
    ) -> WireRequest:
        """Build the wire request for a descriptor.

        Passing medias (even an empty list) or a boundary selects a multipart
        body; otherwise the descriptor's body encoding is used.

        Raises:
            InvalidURLError: If the URL components do not form a valid URL.
        """
        url = self.make_url(descriptor.path, descriptor.query)
        headers = self.make_headers(descriptor.headers)

        if medias is not None or boundary is not None:
            boundary = boundary or make_boundary()
            body: bytes | None = self.make_multipart_body(descriptor, medias or [], boundary)
            _set_default(headers, CONTENT_TYPE, f"multipart/form-data; boundary={boundary}")
        else:
            body = self.make_body(descriptor)
            if body is not None and descriptor.body is not None:
                if descriptor.body.encoding == BodyEncoding.JSON:
                    _set_default(headers, CONTENT_TYPE, JSON_CONTENT_TYPE)
                else:
                    _set_default(headers, CONTENT_TYPE, FORM_CONTENT_TYPE)

        return WireRequest(
            method=descriptor.method.value,
            url=url,
            headers=headers,
            body=body,
        )

    def make_url(self, path: str, query: Sequence[tuple[str, str]] = ()) -> str:
        """Assemble the final URL from the base URL's scheme/host and the given path."""
        if path and not path.startswith("/"):
            raise InvalidURLError(f"Path must start with '/': {path!r}")

        full_path = self._base.path.rstrip("/") + path
        components: dict[str, Any] = {
            "scheme": self._base.scheme,
            "host": self._base.host,
            "path": full_path,
        }
        if self._port is not None:
            components["port"] = self._port
        if query:
            # Encoded by hand: httpx.QueryParams groups repeated keys together.
            components["query"] = urlencode(list(query)).encode("ascii")

        try:
            url = httpx.URL(**components)
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise InvalidURLError(f"Invalid URL for path {path!r}: {e}") from e

        # Scheme and host must never come from the path.
        if url.host != self._base.host or url.scheme != self._base.scheme:
            raise InvalidURLError(f"Path {path!r} changed the request host")

        return str(url)

    def make_headers(self, headers: Mapping[str, Any]) -> dict[str, str]:
        """Apply header fields; non-string values are skipped."""
        result: dict[str, str] = {}
        for key, value in headers.items():
            if isinstance(value, str):
                result[key] = _sanitize_header_value(value)
        return result

    def make_body(self, descriptor: RequestDescriptor) -> bytes | None:
        """Encode the descriptor's body as JSON or URL-encoded form."""
        if descriptor.body is None:
            return None

        params = payload_to_mapping(descriptor.body.payload)
        if params is None:
            logger.warning(
                "Request body for %s %s omitted: payload has no key/value form",
                descriptor.method.value,
                descriptor.path,
            )
            return None

        if descriptor.body.encoding == BodyEncoding.JSON:
            try:
                return json.dumps(params).encode("utf-8")
            except (TypeError, ValueError) as e:
                logger.warning(
                    "Request body for %s %s omitted: JSON serialization failed: %s",
                    descriptor.method.value,
                    descriptor.path,
                    e,
                )
                return None

        return "&".join(
            f"{quote_plus(key)}={quote_plus(stringify_value(value))}"
            for key, value in params.items()
        ).encode("utf-8")

    def make_multipart_body(
        self,
        descriptor: RequestDescriptor,
        medias: Sequence[MediaPart],
        boundary: str,
    ) -> bytes:
        """Build a multipart/form-data body.

        Simple fields come first in payload order, then media parts in list
        order, then the closing boundary.
        """
        body = bytearray()

        params = payload_to_mapping(descriptor.body.payload) if descriptor.body else None
        for key, value in (params or {}).items():
            body += f"--{boundary}{CRLF}".encode("utf-8")
            body += f'Content-Disposition: form-data; name="{key}"{CRLF}{CRLF}'.encode("utf-8")
            body += f"{stringify_value(value)}{CRLF}".encode("utf-8")

        for media in medias:
            body += f"--{boundary}{CRLF}".encode("utf-8")
            body += (
                f'Content-Disposition: form-data; name="{media.key}"; '
                f'filename="{media.filename}"{CRLF}'
            ).encode("utf-8")
            body += f"Content-Type: {media.mime_type}{CRLF}{CRLF}".encode("utf-8")
            body += media.data
            body += CRLF.encode("utf-8")

        body += f"--{boundary}--{CRLF}".encode("utf-8")
        return bytes(body)


def _set_default(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header unless a case-variant of it is already present."""
    if name.lower() not in {k.lower() for k in headers}:
        headers[name] = value
