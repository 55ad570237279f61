from __future__ import annotations

import threading
from time import perf_counter
from typing import Any, Callable, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, pushadd_to_gateway
from prometheus_client.exposition import default_handler

from servicekit.observability.logging import host_name


def _counter_key(name: str) -> str:
    return name[: -len("_total")] if name.endswith("_total") else name


class Measurer(Protocol):
    """Capturing side of metrics, as used by request handlers."""

    def increment(self, name: str) -> None: ...

    def set_gauge(self, name: str, value: float) -> None: ...

    def set_gauge_int(self, name: str, value: int) -> None: ...

    def duration_since(self, name: str, start: float) -> None: ...


class PrometheusMetrics:
    """Counters and gauges pushed periodically to a Prometheus Pushgateway.

    Series are registered on first use. Registration is serialised with a
    lock so concurrent first use of a name creates exactly one series;
    value updates rely on prometheus_client's own locking.

    A daemon thread pushes the whole registry every ``flush_interval_s``
    seconds until :meth:`stop` is called. Push failures are logged and the
    next tick runs as scheduled.
    """

    def __init__(
        self,
        url: str,
        app_name: str,
        flush_interval_s: float,
        logger: Any,
        *,
        push_timeout_s: float = 5.0,
        instance: str | None = None,
        handler: Callable[..., Any] = default_handler,
        clock: Callable[[], float] = perf_counter,
        start: bool = True,
    ) -> None:
        if flush_interval_s <= 0:
            raise ValueError("flush_interval_s must be > 0")

        self.url = url
        self.app_name = app_name
        self.flush_interval_s = flush_interval_s
        self.push_timeout_s = push_timeout_s
        self.instance = instance or host_name()
        self.registry = CollectorRegistry()

        self._logger = logger
        self._handler = handler
        self._clock = clock
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._push_forever,
            name=f"metrics-push-{app_name}",
            daemon=True,
        )
        if start:
            self._thread.start()

    def increment(self, name: str) -> None:
        """Count an occurrence. Counters never decrease.

        Counters are exported as ``<name>_total``, so ``"hits"`` and
        ``"hits_total"`` name the same series.
        """
        key = _counter_key(name)
        counter = self._counters.get(key)
        if counter is None:
            counter = self._register(key, self._counters, Counter)
            if counter is None:
                return
        counter.inc()

    def set_gauge(self, name: str, value: float) -> None:
        gauge = self._gauges.get(name)
        if gauge is None:
            gauge = self._register(name, self._gauges, Gauge)
            if gauge is None:
                return
        gauge.set(float(value))

    def set_gauge_int(self, name: str, value: int) -> None:
        self.set_gauge(name, float(value))

    def duration_since(self, name: str, start: float) -> None:
        """Record whole milliseconds elapsed since ``start`` (a perf_counter reading) as a gauge."""
        elapsed_ms = round((self._clock() - start) * 1000.0)
        self.set_gauge(name, float(elapsed_ms))

    def value(self, name: str) -> float | None:
        """Current value of a registered series, or None if there is none."""
        key = _counter_key(name)
        if key in self._counters:
            return self.registry.get_sample_value(f"{key}_total")
        if name in self._gauges:
            return self.registry.get_sample_value(name)
        return None

    def _register(self, name: str, series: dict[str, Any], kind: type) -> Any | None:
        with self._lock:
            existing = series.get(name)
            if existing is not None:
                return existing
            try:
                metric = kind(name, name, registry=None)
                self.registry.register(metric)
            except ValueError as exc:
                self._logger.error("failed to register metric", metric=name, error=str(exc))
                return None
            series[name] = metric
            return metric

    def flush(self) -> bool:
        """Push the registry now. Returns False if the push failed."""
        try:
            pushadd_to_gateway(
                self.url,
                job=self.app_name,
                registry=self.registry,
                grouping_key={"instance": self.instance},
                timeout=self.push_timeout_s,
                handler=self._handler,
            )
        except Exception as exc:  # noqa: BLE001
            # Nobody waits on the push thread, so the failure only gets logged.
            self._logger.error("failed to push metrics", url=self.url, error=str(exc))
            return False
        return True

    def _push_forever(self) -> None:
        while not self._stopped.wait(self.flush_interval_s):
            self.flush()

    def stop(self, flush: bool = True, timeout: float | None = None) -> None:
        """Stop the push thread and optionally push one last time."""
        self._stopped.set()
        if self._thread.is_alive():
            self._thread.join(timeout)
        if flush:
            self.flush()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()
