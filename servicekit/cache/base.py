from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, TypeVar, overload

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError, to_json

from servicekit.cache.errors import (
    CacheDecodeError,
    CacheKeyNotFoundError,
    CacheNoTTLError,
    CacheSerializationError,
)


M = TypeVar("M", bound=BaseModel)

Expiration = float | int | timedelta

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# Remaining-TTL codes shared by all backends (Redis PTTL semantics).
TTL_MISSING = -2
TTL_NONE = -1


def expiration_ms(expiration: Expiration) -> int | None:
    """Convert an expiration to milliseconds. Zero means "never expires" and maps to None."""
    seconds = expiration.total_seconds() if isinstance(expiration, timedelta) else float(expiration)
    if seconds < 0:
        raise ValueError("expiration must be >= 0")
    if seconds == 0:
        return None
    return max(1, round(seconds * 1000))


class Cache(ABC):
    """Typed key-value cache with key-prefix isolation.

    With a prefix ``p`` every key ``k`` is stored as ``"p:k"``; with an empty
    prefix keys are used as-is. Subclasses implement the raw operations on
    already-prefixed keys; typed encoding lives here.
    """

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def prefixed_key(self, key: str) -> str:
        if not self._prefix:
            return key
        return f"{self._prefix}:{key}"

    # Raw operations on prefixed keys.

    @abstractmethod
    def _write(self, key: str, value: str, ttl_ms: int | None) -> None: ...

    @abstractmethod
    def _read(self, key: str) -> str | None: ...

    @abstractmethod
    def _increment(self, key: str) -> int: ...

    @abstractmethod
    def _remove(self, key: str) -> None: ...

    @abstractmethod
    def _remaining_ms(self, key: str) -> int: ...

    @abstractmethod
    def ping(self) -> bool: ...

    @abstractmethod
    def close(self) -> None: ...

    # Public API.

    def set(self, key: str, value: str, expiration: Expiration = 0) -> None:
        """Store a string. An expiration of zero means the key never expires."""
        self._write(self.prefixed_key(key), value, expiration_ms(expiration))

    def get(self, key: str) -> str:
        result = self._read(self.prefixed_key(key))
        if result is None:
            raise CacheKeyNotFoundError(key)
        return result

    def set_bool(self, key: str, value: bool, expiration: Expiration = 0) -> None:
        self.set(key, "true" if value else "false", expiration)

    def get_bool(self, key: str) -> bool:
        raw = self.get(key)
        if raw in _TRUE:
            return True
        if raw in _FALSE:
            return False
        raise CacheDecodeError(f"cannot read {raw!r} at {key!r} as bool")

    def set_int(self, key: str, value: int, expiration: Expiration = 0) -> None:
        value = int(value)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"value for {key!r} is out of the 64-bit range")
        self.set(key, str(value), expiration)

    def get_int(self, key: str) -> int:
        raw = self.get(key)
        if not _INT_RE.fullmatch(raw):
            raise CacheDecodeError(f"cannot read {raw!r} at {key!r} as int")
        value = int(raw)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise CacheDecodeError(f"value at {key!r} is out of the 64-bit range")
        return value

    def incr(self, key: str) -> int:
        """Atomically add one to the integer at ``key`` and return the new value.

        Absent keys start from zero. Atomicity comes from the backend.
        """
        return self._increment(self.prefixed_key(key))

    def set_json(self, key: str, value: Any, expiration: Expiration = 0) -> None:
        """Store ``value`` as a JSON document.

        Encoded by pydantic, so models (also nested in lists and dicts) are
        dumped by alias and datetimes, UUIDs and the like become strings.
        Values pydantic cannot encode raise :class:`CacheSerializationError`
        and nothing is written.
        """
        try:
            payload = to_json(value, by_alias=True).decode("utf-8")
        except (PydanticSerializationError, TypeError, ValueError) as exc:
            raise CacheSerializationError(f"cannot encode value for {key!r} as JSON: {exc}") from exc
        self.set(key, payload, expiration)

    @overload
    def get_json(self, key: str) -> Any: ...

    @overload
    def get_json(self, key: str, model: type[M]) -> M: ...

    def get_json(self, key: str, model: type[M] | None = None) -> Any:
        """Read a JSON document, optionally validated into a pydantic model."""
        raw = self.get(key)
        try:
            if model is not None:
                return model.model_validate_json(raw)
            return json.loads(raw)
        except (ValidationError, ValueError) as exc:
            raise CacheDecodeError(f"cannot decode JSON at {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is not an error."""
        self._remove(self.prefixed_key(key))

    def ttl(self, key: str) -> timedelta:
        remaining = self._remaining_ms(self.prefixed_key(key))
        if remaining == TTL_MISSING:
            raise CacheKeyNotFoundError(key)
        if remaining == TTL_NONE:
            raise CacheNoTTLError(key)
        return timedelta(milliseconds=remaining)
