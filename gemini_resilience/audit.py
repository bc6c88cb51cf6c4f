# gemini_resilience/audit.py

"""
Audit trail for resilient calls.

Sinks are fire-and-forget: ``safe_record`` guarantees a failing sink can
never change the outcome of a call.
"""

import logging
from typing import Protocol, runtime_checkable

import structlog

from .models import AuditEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    """Receives one event per attempt and per terminal outcome."""

    def record(self, event: AuditEvent) -> None: ...


class StructlogAuditSink:
    """Emits audit events as structlog key/value records."""

    def __init__(self, logger_name: str = "gemini_resilience.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    def record(self, event: AuditEvent) -> None:
        fields = event.to_dict()
        operation = fields.pop("operation")
        if event.outcome in ("success", "attempt_succeeded"):
            self._logger.info("resilient_call", operation=operation, **fields)
        else:
            self._logger.warning("resilient_call", operation=operation, **fields)


class InMemoryAuditSink:
    """Keeps events in a list; useful for tests and diagnostics."""

    def __init__(self, max_events: int = 1000) -> None:
        self.events: list[AuditEvent] = []
        self._max_events = max_events

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)
        if len(self.events) > self._max_events:
            self.events = self.events[-self._max_events :]

    def outcomes(self, operation: str | None = None) -> list[str]:
        return [e.outcome for e in self.events if operation is None or e.operation == operation]


def safe_record(sink: AuditSink | None, event: AuditEvent) -> None:
    """Record an event, logging and discarding any sink failure."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as e:
        logger.warning(f"Audit sink {type(sink).__name__} failed for {event.operation}: {e}")
