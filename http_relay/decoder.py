"""Response Decoder - Deserializes 2xx body bytes into a typed result.

Decoding is pure and synchronous. The target can be anything pydantic can
validate: a BaseModel subclass, a dataclass, a TypedDict, or a plain type such
as dict[str, Any] or list[int].
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from http_relay.errors import DecodingFailedError

T = TypeVar("T")


@lru_cache(maxsize=256)
def _adapter_for(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


class ResponseDecoder:
    """Decodes JSON bodies with pydantic.

    Args:
        strict: Use pydantic strict mode (no coercion, e.g. "1" is not an int).

    Key strategies and date formats belong on the target model (aliases,
    validators). Subclass and override decode() to plug in another format.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def decode(self, data: bytes, target: type[T]) -> T:
        """Decode body bytes into an instance of target.

        Raises:
            DecodingFailedError: If the bytes are not valid JSON or do not match target.
        """
        try:
            adapter = _adapter_for(target)
        except TypeError:
            # Unhashable generic aliases cannot be cached.
            adapter = TypeAdapter(target)

        try:
            return adapter.validate_json(data, strict=self.strict)
        except ValidationError as e:
            raise DecodingFailedError(
                f"Could not decode response as {getattr(target, '__name__', target)}: {e}",
                data,
            ) from e


DEFAULT_DECODER = ResponseDecoder()
