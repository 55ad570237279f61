"""Helpers for asserting on log output in tests."""

from __future__ import annotations

import logging
from typing import Any

import structlog
from structlog.testing import LogCapture

from servicekit.observability.obs import Observability


class RecordingLogger:
    """A structlog logger that records entries instead of printing them.

    ``logger`` is the bound logger to hand to code under test; it accepts
    every level down to debug. Entries are dicts with ``event``,
    ``log_level`` and the bound fields.
    """

    def __init__(self) -> None:
        self._capture = LogCapture()
        self.logger = structlog.wrap_logger(
            structlog.ReturnLogger(),
            processors=[self._capture],
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
            context_class=dict,
        ).bind()

    @property
    def entries(self) -> list[dict[str, Any]]:
        return list(self._capture.entries)

    @property
    def last_entry(self) -> dict[str, Any] | None:
        return self._capture.entries[-1] if self._capture.entries else None

    def reset(self) -> None:
        self._capture.entries.clear()


def new_test_observability(logged_headers: dict[str, str] | None = None) -> tuple[Observability, RecordingLogger]:
    recorder = RecordingLogger()
    return Observability(logger=recorder.logger, logged_headers=logged_headers or {}), recorder
