"""Internal data models for http-relay.

All models use Pydantic v2. Descriptors are declarative and immutable; wire
requests are the mutable, fully-built form handed to the transport.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Request Description Models
# =============================================================================


class HTTPMethod(str, Enum):
    """HTTP verbs a descriptor may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class BodyEncoding(str, Enum):
    """How a descriptor's payload is written into the request body."""

    JSON = "json"
    URL_ENCODED = "url_encoded"


class RequestBody(BaseModel):
    """Payload plus the encoding to apply when building the wire request.

    The payload is any value that can be turned into a key/value mapping:
    a pydantic model, a dataclass instance, or a mapping.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    payload: Any = Field(description="Value to encode (model, dataclass, or mapping)")
    encoding: BodyEncoding = Field(default=BodyEncoding.JSON, description="Body encoding")


class RequestDescriptor(BaseModel):
    """Declarative description of one logical request.

    Query items are ordered (key, value) pairs so repeated keys survive.
    Header values that are not strings are skipped when the request is built.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    method: HTTPMethod = Field(description="HTTP method")
    path: str = Field(default="", description="Path appended to the base URL's path")
    query: list[tuple[str, str]] = Field(
        default_factory=list, description="Ordered query items"
    )
    headers: dict[str, Any] = Field(default_factory=dict, description="Request headers")
    body: RequestBody | None = Field(default=None, description="Optional body and encoding")

    @classmethod
    def get(cls, path: str, **kwargs: Any) -> RequestDescriptor:
        return cls(method=HTTPMethod.GET, path=path, **kwargs)

    @classmethod
    def post(cls, path: str, **kwargs: Any) -> RequestDescriptor:
        return cls(method=HTTPMethod.POST, path=path, **kwargs)

    @classmethod
    def put(cls, path: str, **kwargs: Any) -> RequestDescriptor:
        return cls(method=HTTPMethod.PUT, path=path, **kwargs)

    @classmethod
    def patch(cls, path: str, **kwargs: Any) -> RequestDescriptor:
        return cls(method=HTTPMethod.PATCH, path=path, **kwargs)

    @classmethod
    def delete(cls, path: str, **kwargs: Any) -> RequestDescriptor:
        return cls(method=HTTPMethod.DELETE, path=path, **kwargs)


class MediaPart(BaseModel):
    """One file part of a multipart/form-data upload."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    data: bytes = Field(description="Raw file bytes")
    key: str = Field(description="Form field name")
    filename: str = Field(description="Filename reported to the server")
    mime_type: str = Field(description="Content-Type of the part, e.g., image/png")


# =============================================================================
# Wire-level Models
# =============================================================================


class WireRequest(BaseModel):
    """A fully built request: final URL, method, headers and body bytes.

    Owned by a single dispatch. Interceptors adapt a request by returning a
    copy (see with_header) so a retry always starts from the original.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="HTTP method")
    url: str = Field(description="Absolute URL including query string")
    headers: dict[str, str] = Field(default_factory=dict, description="Header fields")
    body: bytes | None = Field(default=None, description="Encoded body, if any")

    def with_header(self, name: str, value: str) -> WireRequest:
        """Return a copy with one header set (replacing any case-variant of it)."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return self.model_copy(update={"headers": headers})

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lower:
                return value
        return None


class TransportResponse(BaseModel):
    """One HTTP response as captured by the transport.

    Header keys are lowercase. Header values are arrays for repeated headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    content: bytes = Field(default=b"", description="Raw response body")
    url: str = Field(default="", description="URL the response came from")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299


class RetryDecision(str, Enum):
    """Outcome of an interceptor's retry consultation."""

    RETRY = "retry"
    DO_NOT_RETRY = "do_not_retry"


class Result(BaseModel):
    """Outcome delivered to callback-style completions.

    Exactly one of value/error is meaningful; check ok before reading value.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    value: Any = Field(default=None, description="Decoded value on success")
    error: BaseException | None = Field(default=None, description="Terminal error on failure")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, or raise the terminal error."""
        if self.error is not None:
            raise self.error
        return self.value


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class CachePolicy(str, Enum):
    """Request cache policy, applied as Cache-Control request headers."""

    USE_PROTOCOL_CACHE_POLICY = "use_protocol_cache_policy"
    RELOAD_IGNORING_LOCAL_CACHE_DATA = "reload_ignoring_local_cache_data"
    RETURN_CACHE_DATA_ELSE_LOAD = "return_cache_data_else_load"
    RETURN_CACHE_DATA_DONT_LOAD = "return_cache_data_dont_load"


class LogLevel(str, Enum):
    """Network logging verbosity."""

    OFF = "off"
    SUMMARY = "summary"  # URL, method, status and error only
    VERBOSE = "verbose"  # Adds headers and bodies


class ClientConfig(BaseModel):
    """Configuration for one RelayClient instance."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Absolute base URL; supplies scheme, host and base path")
    port: int | None = Field(default=None, description="Port override (base URL port if None)")
    cache_policy: CachePolicy = Field(
        default=CachePolicy.USE_PROTOCOL_CACHE_POLICY, description="Request cache policy"
    )
    log_level: LogLevel = Field(default=LogLevel.VERBOSE, description="Network log verbosity")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers sent on every request (supports ${ENV_VAR} substitution)",
    )
    max_workers: int = Field(
        default=4, ge=1, description="Worker threads for callback and future dispatch"
    )
    max_retries: int | None = Field(
        default=None,
        ge=0,
        description="Optional cap on interceptor-approved retries (None = unbounded)",
    )
    redact_headers: list[str] = Field(
        default_factory=list, description="Header names whose values are masked in logs"
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("base_url must be an absolute http:// or https:// URL")
        return v

    @model_validator(mode="after")
    def check_port_range(self) -> Self:
        if self.port is not None and not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")
        return self
