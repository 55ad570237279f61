from __future__ import annotations


class CacheError(Exception):
    """Base class for everything the cache client raises."""


class CacheKeyNotFoundError(CacheError, KeyError):
    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"key not found in cache: {self.key}"


class CacheNoTTLError(CacheError):
    def __init__(self, key: str) -> None:
        super().__init__(f"key does not have a TTL set: {key}")
        self.key = key


class CacheDecodeError(CacheError, ValueError):
    """Stored value cannot be read as the requested type."""


class CacheSerializationError(CacheError, TypeError):
    """Value cannot be encoded for storage."""


class CacheBackendError(CacheError):
    """The backing store failed or could not be reached."""
