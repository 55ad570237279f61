"""Typed key-value cache with prefix isolation (Redis and in-memory backends)."""

from servicekit.cache.base import Cache
from servicekit.cache.errors import (
    CacheBackendError,
    CacheDecodeError,
    CacheError,
    CacheKeyNotFoundError,
    CacheNoTTLError,
    CacheSerializationError,
)
from servicekit.cache.memory import MemoryCache
from servicekit.cache.redis import RedisCache

__all__ = [
    "Cache",
    "MemoryCache",
    "RedisCache",
    "CacheError",
    "CacheKeyNotFoundError",
    "CacheNoTTLError",
    "CacheDecodeError",
    "CacheSerializationError",
    "CacheBackendError",
]
