from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import redis
import structlog

from servicekit.cache.base import Cache
from servicekit.cache.errors import CacheBackendError


log = structlog.get_logger("servicekit.cache")


class RedisCache(Cache):
    """Cache backed by a Redis server.

    The wrapped client must be created with ``decode_responses=True``. The
    cache owns the client and closes it in :meth:`close`.
    """

    def __init__(self, client: redis.Redis, prefix: str = "") -> None:
        super().__init__(prefix)
        self.client = client

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        prefix: str = "",
        db: int = 0,
        timeout_s: float = 2.0,
        client_factory: Callable[..., Any] = redis.Redis,
    ) -> RedisCache:
        """Create a client and check the server answers before returning."""
        client = client_factory(
            host=host,
            port=port,
            db=db,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
            decode_responses=True,
        )
        try:
            client.ping()
        except redis.RedisError as exc:
            client.close()
            raise CacheBackendError(f"could not ping redis at {host}:{port}: {exc}") from exc

        log.info("redis_connected", host=host, port=port, db=db, prefix=prefix)
        return cls(client, prefix=prefix)

    @contextmanager
    def _translate(self, command: str, key: str | None = None) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise CacheBackendError(f"redis {command} failed: {exc}") from exc
        log.debug("redis_command", command=command, key=key)

    def _write(self, key: str, value: str, ttl_ms: int | None) -> None:
        with self._translate("SET", key):
            self.client.set(key, value, px=ttl_ms)

    def _read(self, key: str) -> str | None:
        with self._translate("GET", key):
            return self.client.get(key)

    def _increment(self, key: str) -> int:
        with self._translate("INCR", key):
            return int(self.client.incr(key))

    def _remove(self, key: str) -> None:
        with self._translate("DEL", key):
            self.client.delete(key)

    def _remaining_ms(self, key: str) -> int:
        with self._translate("PTTL", key):
            return int(self.client.pttl(key))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        with self._translate("CLOSE"):
            self.client.close()
