from __future__ import annotations

import logging
import os
import socket
import sys
from typing import IO, Any

import structlog


_CONFIGURED = False

_LEVELS: dict[str, int] = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


class ConfigurationError(ValueError):
    """Invalid observability setup; raised at construction time."""


def parse_level(name: str) -> int:
    try:
        return _LEVELS[name.strip().lower()]
    except (AttributeError, KeyError):
        raise ConfigurationError(f"not a valid log level: {name!r}") from None


def host_name() -> str:
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


def build_logger(
    level: str,
    app_name: str,
    sentry_dsn: str = "",
    version: str = "",
    stream: IO[str] | None = None,
) -> structlog.typing.FilteringBoundLogger:
    """Build a JSON logger that is independent of the global structlog config.

    Every entry carries the process identity fields ``name``, ``pid`` and
    ``hostname``. If a Sentry DSN is given, error-level entries are also
    reported to Sentry.
    """

    min_level = parse_level(level)

    processors: list[Any] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if sentry_dsn:
        from servicekit.observability.alerting import SentryAlertProcessor, init_sentry

        init_sentry(sentry_dsn, release=version)
        processors.append(SentryAlertProcessor())

    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.EventRenamer("msg"),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ]

    logger = structlog.wrap_logger(
        structlog.PrintLogger(file=stream if stream is not None else sys.stdout),
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        cache_logger_on_first_use=False,
    )
    return logger.bind(name=app_name, pid=os.getpid(), hostname=host_name())


def configure_stdlib_logging(level: int = logging.INFO) -> None:
    """Render stdlib (and uvicorn) log records as JSON through structlog.

    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    pre_chain: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Keep uvicorn's own loggers consistent with our handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True
