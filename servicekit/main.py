from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from servicekit.cache import Cache, RedisCache
from servicekit.config import Settings, get_settings
from servicekit.observability.logging import configure_stdlib_logging, parse_level
from servicekit.observability.middleware import ObservabilityMiddleware
from servicekit.observability.obs import Observability


def create_app(
    settings: Settings | None = None,
    cache: Cache | None = None,
    obs: Observability | None = None,
) -> FastAPI:
    """Application wired with a cache and an observability context.

    Anything not injected is built from ``settings`` at startup and released
    at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = settings or get_settings()
        owned_obs = obs is None
        owned_cache = cache is None

        app.state.obs = obs or Observability.from_settings(cfg)
        configure_stdlib_logging(parse_level(cfg.log_level))
        app.state.cache = None

        try:
            with app.state.obs.recover_and_log():
                app.state.cache = cache or RedisCache.connect(
                    cfg.redis_host,
                    cfg.redis_port,
                    prefix=cfg.cache_prefix,
                    db=cfg.redis_db,
                    timeout_s=cfg.cache_timeout_s,
                )
            app.state.obs.logger.info("startup", cache_prefix=app.state.cache.prefix)
            yield
        finally:
            if owned_cache and app.state.cache is not None:
                app.state.cache.close()
            if owned_obs:
                app.state.obs.shutdown()

    app = FastAPI(title="servicekit", version="0.1.0", lifespan=lifespan)
    app.add_middleware(ObservabilityMiddleware)

    # Plain def: ping blocks on the socket, so FastAPI runs it in the threadpool.
    @app.get("/health")
    def health(request: Request) -> dict[str, object]:
        return {"status": "ok", "cache": request.app.state.cache.ping()}

    return app
