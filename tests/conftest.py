from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import redis
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from servicekit.cache import MemoryCache, RedisCache
from servicekit.config import Settings, get_settings
from servicekit.main import create_app
from servicekit.observability.metrics import PrometheusMetrics
from servicekit.observability.obs import Observability
from servicekit.observability.testing import new_test_observability


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockRedis:
    """Just enough of redis.Redis (decode_responses=True) for RedisCache."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.rows: dict[str, tuple[str, float | None]] = {}
        self.commands: list[tuple] = []
        self.closed = False

    def _live(self, name: str) -> tuple[str, float | None] | None:
        row = self.rows.get(name)
        if row is not None and row[1] is not None and row[1] <= self.clock():
            del self.rows[name]
            return None
        return row

    def set(self, name: str, value: str, px: int | None = None) -> bool:
        self.commands.append(("SET", name, value, px))
        expires_at = None if px is None else self.clock() + px / 1000.0
        self.rows[name] = (value, expires_at)
        return True

    def get(self, name: str) -> str | None:
        self.commands.append(("GET", name))
        row = self._live(name)
        return None if row is None else row[0]

    def incr(self, name: str) -> int:
        self.commands.append(("INCR", name))
        row = self._live(name)
        if row is None:
            self.rows[name] = ("1", None)
            return 1
        try:
            value = int(row[0]) + 1
        except ValueError:
            raise redis.ResponseError("value is not an integer or out of range") from None
        self.rows[name] = (str(value), row[1])
        return value

    def delete(self, *names: str) -> int:
        self.commands.append(("DEL", *names))
        return sum(1 for name in names if self.rows.pop(name, None) is not None)

    def pttl(self, name: str) -> int:
        self.commands.append(("PTTL", name))
        row = self._live(name)
        if row is None:
            return -2
        if row[1] is None:
            return -1
        return round((row[1] - self.clock()) * 1000)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


class BrokenRedis:
    """Every command fails the way an unreachable server does."""

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.closed = False

    def __getattr__(self, name: str):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

        return fail

    def close(self) -> None:
        self.closed = True


class RecordingPushHandler:
    """prometheus_client push handler that records requests instead of sending them."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    def __call__(self, url, method, timeout, headers, data):
        def handle() -> None:
            self.calls.append({"url": url, "method": method, "timeout": timeout, "data": data})
            if self.fail:
                raise OSError("connection refused")

        return handle


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LOG_LEVEL", "METRICS_URL", "SENTRY_DSN", "LOGGED_HEADERS", "CACHE_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_redis(clock: FakeClock) -> MockRedis:
    return MockRedis(clock)


@pytest.fixture(params=["memory", "redis"])
def cache_factory(request, clock: FakeClock, mock_redis: MockRedis):
    """Build a cache with the given prefix on either backend; both must behave the same."""

    def build(prefix: str = "testPrefix"):
        if request.param == "memory":
            return MemoryCache(prefix=prefix, clock=clock)
        return RedisCache(mock_redis, prefix=prefix)

    return build


@pytest.fixture
def recorder_obs():
    return new_test_observability({"X-Req-Id": "requestId"})


@pytest.fixture
def push_handler() -> RecordingPushHandler:
    return RecordingPushHandler()


@pytest.fixture
def metrics(recorder_obs, push_handler) -> PrometheusMetrics:
    _, recorder = recorder_obs
    m = PrometheusMetrics(
        "http://pushgateway:9091",
        "test-app",
        60.0,
        recorder.logger,
        instance="host-1",
        handler=push_handler,
        start=False,
    )
    yield m
    m.stop(flush=False)


@pytest.fixture
def app(recorder_obs, metrics) -> FastAPI:
    obs, _ = recorder_obs
    obs = Observability(logger=obs.logger, metrics=metrics, logged_headers=obs.logged_headers)
    return create_app(settings=Settings(), cache=MemoryCache(prefix="api"), obs=obs)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
