from __future__ import annotations

from time import perf_counter
from typing import Any, Callable

from starlette.requests import Request

from servicekit.observability.obs import Observability, RequestInfo


class ObservabilityMiddleware:
    """Gives every HTTP request its own derived observability context.

    The context is stored in ``scope["state"]["obs"]`` (``request.state.obs``
    for handlers). Each request also produces one access log line and, with
    metrics configured, a request counter and a duration gauge.
    """

    def __init__(self, app: Callable[..., Any], obs: Observability | None = None) -> None:
        self.app = app
        self.obs = obs
        # Health checks would otherwise dominate the request metrics.
        self._excluded_metric_paths = {"/health"}

    def _base_obs(self, scope: dict[str, Any]) -> Observability | None:
        if self.obs is not None:
            return self.obs
        app = scope.get("app")
        return getattr(getattr(app, "state", None), "obs", None)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        base = self._base_obs(scope) if scope.get("type") == "http" else None
        if base is None:
            await self.app(scope, receive, send)
            return

        obs = base.copy_with_request(RequestInfo.from_scope(scope))
        scope.setdefault("state", {})["obs"] = obs

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))

            await send(message)

        try:
            with obs.recover_and_log():
                await self.app(scope, receive, send_wrapper)
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0

            # Update metrics first so they update even if logging misbehaves.
            if obs.metrics is not None and scope.get("path") not in self._excluded_metric_paths:
                obs.metrics.increment("http_requests_total")
                obs.metrics.duration_since("http_request_duration_ms", start)

            obs.logger.info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_ms, 2),
            )


def get_request_obs(request: Request) -> Observability:
    """FastAPI dependency returning the request's derived context."""
    obs = getattr(request.state, "obs", None)
    if obs is None:
        # Middleware not installed; fall back to the shared context.
        return request.app.state.obs
    return obs
