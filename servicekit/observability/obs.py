from __future__ import annotations

import traceback
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import IO, TYPE_CHECKING, Any

from starlette.datastructures import Headers

from servicekit.observability.logging import build_logger
from servicekit.observability.metrics import PrometheusMetrics

if TYPE_CHECKING:
    from servicekit.config import Settings


@dataclass(frozen=True)
class RequestInfo:
    """The parts of an incoming request that end up in log fields."""

    url: str
    method: str
    headers: Headers = field(default_factory=Headers)

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(headers=dict(self.headers)))

    @classmethod
    def from_scope(cls, scope: Mapping[str, Any]) -> RequestInfo:
        url = scope.get("path", "")
        query = scope.get("query_string", b"")
        if query:
            url = f"{url}?{query.decode('latin-1')}"
        return cls(url=url, method=scope.get("method", ""), headers=Headers(scope=scope))


@dataclass(frozen=True)
class Observability:
    """Logger plus optional metrics, shared read-only across requests.

    Never mutated after construction: request-specific fields go onto a copy
    made by :meth:`copy_with_request`.
    """

    logger: Any
    metrics: PrometheusMetrics | None = None
    logged_headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "logged_headers", MappingProxyType(dict(self.logged_headers)))

    @classmethod
    def from_settings(cls, settings: Settings, stream: IO[str] | None = None) -> Observability:
        """Build the logger and, if a metrics URL is configured, the Pushgateway collector."""
        logger = build_logger(
            settings.log_level,
            settings.app_name,
            sentry_dsn=settings.sentry_dsn,
            version=settings.app_version,
            stream=stream,
        )

        metrics = None
        if settings.metrics_enabled:
            metrics = PrometheusMetrics(
                settings.metrics_url,
                settings.app_name,
                settings.metrics_flush_interval_s,
                logger,
                push_timeout_s=settings.metrics_push_timeout_s,
            )

        return cls(logger=logger, metrics=metrics, logged_headers=settings.logged_headers)

    def copy_with_request(self, request: RequestInfo) -> Observability:
        """Return a copy whose logger carries the request URL, method and logged headers.

        Only headers listed in ``logged_headers`` and present with a non-empty
        value are added, under their configured field names.
        """
        fields: dict[str, Any] = {"url": request.url, "method": request.method}
        for header_name, field_name in self.logged_headers.items():
            value = request.headers.get(header_name)
            if value:
                fields[field_name] = value
        return replace(self, logger=self.logger.bind(**fields))

    @contextmanager
    def recover_and_log(self) -> Iterator[None]:
        """Log an escaping exception with its full stack at error level, then re-raise.

        Usable as ``with obs.recover_and_log():`` or as a decorator.
        """
        try:
            yield
        except Exception as exc:
            self.logger.error(str(exc) or type(exc).__name__, stack=traceback.format_exc())
            raise

    def shutdown(self) -> None:
        if self.metrics is not None:
            self.metrics.stop(flush=True)
