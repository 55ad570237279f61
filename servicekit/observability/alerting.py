from __future__ import annotations

import sys
from typing import Any

import sentry_sdk
from sentry_sdk.utils import BadDsn

from servicekit.observability.logging import ConfigurationError


_ALERT_LEVELS = {"error", "critical", "exception"}

# Fields that describe the entry itself rather than the situation around it.
_RESERVED = {"event", "level", "timestamp", "exc_info", "stack_info"}


def init_sentry(dsn: str, release: str = "", shutdown_timeout_s: float = 0.5) -> None:
    try:
        sentry_sdk.init(
            dsn=dsn,
            release=release or None,
            shutdown_timeout=shutdown_timeout_s,
            # Events are forwarded explicitly by SentryAlertProcessor.
            default_integrations=False,
        )
    except BadDsn as exc:
        raise ConfigurationError(f"invalid sentry dsn: {exc}") from exc


class SentryAlertProcessor:
    """structlog processor forwarding error-level entries to Sentry.

    Bound fields are attached as Sentry extras. The event dict is passed on
    unchanged so the entry is still rendered locally.
    """

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if method_name not in _ALERT_LEVELS:
            return event_dict

        exc_info = event_dict.get("exc_info")
        if exc_info is True:
            exc_info = sys.exc_info()

        with sentry_sdk.new_scope() as scope:
            for key, value in event_dict.items():
                if key not in _RESERVED:
                    scope.set_extra(key, value)
            if isinstance(exc_info, BaseException) or (isinstance(exc_info, tuple) and exc_info[0] is not None):
                sentry_sdk.capture_exception(exc_info)
            else:
                level = "fatal" if method_name == "critical" else "error"
                sentry_sdk.capture_message(str(event_dict.get("event", "")), level=level)

        return event_dict
