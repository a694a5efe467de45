"""Pluggable sinks for queue events (enqueued, delivered, dropped, ...)."""
import logging
import threading
from collections import Counter
from typing import Any, Dict

from location_queue.logging_conf import logger

# Events that represent lost or at-risk data are logged louder.
_LEVELS = {
    "dropped": logging.WARNING,
    "persist_failed": logging.ERROR,
    "evicted": logging.INFO,
    "enqueued": logging.INFO,
    "delivered": logging.INFO,
    "drain_completed": logging.INFO,
}


class EventSink:
    """Receives structured queue events."""

    def emit(self, event: str, **fields: Any) -> None:
        raise NotImplementedError


class LoggingSink(EventSink):
    """Writes each event to the package logger with its fields as ``extra``."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def emit(self, event: str, **fields: Any) -> None:
        level = _LEVELS.get(event, logging.DEBUG)
        details = " ".join(f"{k}={v}" for k, v in fields.items())
        self.log.log(level, f"Location queue {event} {details}".rstrip(), extra={"queue_event": event, **fields})


class CountingSink(EventSink):
    """Counts events per name; optionally forwards to another sink."""

    def __init__(self, forward: EventSink = None):
        self.forward = forward
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def emit(self, event: str, **fields: Any) -> None:
        with self._lock:
            self._counts[event] += 1
        if self.forward is not None:
            self.forward.emit(event, **fields)

    def count(self, event: str) -> int:
        with self._lock:
            return self._counts[event]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


def safe_emit(sink: EventSink, event: str, **fields: Any) -> None:
    """Emit to a sink without letting a sink failure escape."""
    try:
        sink.emit(event, **fields)
    except Exception as e:
        logger.error(f"Event sink failed on {event}: {e}", exc_info=True)
