from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from servicekit.cache.base import TTL_MISSING, TTL_NONE, Cache
from servicekit.cache.errors import CacheBackendError


# Expired rows are dropped on read, and from the whole table every SWEEP_EVERY writes.
SWEEP_EVERY = 256


@dataclass
class _Entry:
    value: str
    expires_at: float | None = None


class MemoryCache(Cache):
    """Process-local cache with the same semantics as :class:`RedisCache`.

    Meant for tests and local development. ``clock`` returns seconds and
    must be monotonic; tests pass a fake one to move time forward.
    """

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(prefix)
        self._clock = clock
        self._rows: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._writes = 0
        self.closed = False

    def _live(self, key: str) -> _Entry | None:
        row = self._rows.get(key)
        if row is None:
            return None
        if row.expires_at is not None and row.expires_at <= self._clock():
            del self._rows[key]
            return None
        return row

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, row in self._rows.items() if row.expires_at is not None and row.expires_at <= now]
        for key in expired:
            del self._rows[key]

    def _write(self, key: str, value: str, ttl_ms: int | None) -> None:
        expires_at = None if ttl_ms is None else self._clock() + ttl_ms / 1000.0
        with self._lock:
            self._writes += 1
            if self._writes % SWEEP_EVERY == 0:
                self._sweep()
            self._rows[key] = _Entry(value=value, expires_at=expires_at)

    def _read(self, key: str) -> str | None:
        with self._lock:
            row = self._live(key)
            return None if row is None else row.value

    def _increment(self, key: str) -> int:
        with self._lock:
            row = self._live(key)
            if row is None:
                self._rows[key] = _Entry(value="1")
                return 1
            try:
                value = int(row.value) + 1
            except ValueError:
                raise CacheBackendError("value is not an integer or out of range") from None
            # INCR keeps the existing expiration.
            row.value = str(value)
            return value

    def _remove(self, key: str) -> None:
        with self._lock:
            self._rows.pop(key, None)

    def _remaining_ms(self, key: str) -> int:
        with self._lock:
            row = self._live(key)
            if row is None:
                return TTL_MISSING
            if row.expires_at is None:
                return TTL_NONE
            return max(0, round((row.expires_at - self._clock()) * 1000))

    def keys(self) -> list[str]:
        """Stored (prefixed) keys that have not expired."""
        with self._lock:
            self._sweep()
            return list(self._rows)

    def ping(self) -> bool:
        return not self.closed

    def close(self) -> None:
        self.closed = True
