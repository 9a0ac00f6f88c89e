"""
searchwire Telemetry — Per-Request Instrumentation Events
=========================================================

Every dispatched request emits exactly one ``TelemetryEvent`` named
``telemetry_prefix + ("request",)``, e.g. ``("my_app", "searchwire",
"request")``.

Measurements (seconds, monotonic clock):
    response_time  how long the cluster took to answer
    decode_time    how long decoding the response into a value or error took
    total_time     how long everything took, signing and pool wait included

Metadata:
    method, path, port, host   what was requested
    headers, body              what was sent, after signing
    result                     the Response returned, or the exception raised

Handlers are attached to an event name and called synchronously, in attach
order. A handler that raises is logged and detached; it never affects the
request that emitted the event.

    def log_slow(event):
        if event.measurements["total_time"] > 1.0:
            print("slow:", event.metadata["path"])

    searchwire.telemetry.attach("slow-log", ("my_app", "searchwire", "request"), log_slow)
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

EventName = Tuple[str, ...]


@dataclass(frozen=True)
class TelemetryEvent:
    """One request's measurements and metadata."""

    name: EventName
    measurements: Mapping[str, float] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)


Handler = Callable[[TelemetryEvent], Any]


class TelemetryEmitter:
    """Registry of telemetry handlers keyed by handler id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, Tuple[EventName, Handler]] = {}

    def attach(self, handler_id: str, event_name: EventName, handler: Handler) -> None:
        """
        Attach a handler to an event name.

        Raises:
            ValueError: If ``handler_id`` is already attached
        """
        with self._lock:
            if handler_id in self._handlers:
                raise ValueError(f"telemetry handler {handler_id!r} is already attached")
            self._handlers[handler_id] = (tuple(event_name), handler)

    def detach(self, handler_id: str) -> bool:
        """Detach a handler. Returns False if it was not attached."""
        with self._lock:
            return self._handlers.pop(handler_id, None) is not None

    def handlers(self, event_name: Optional[EventName] = None) -> List[str]:
        """Ids of attached handlers, optionally only those for ``event_name``."""
        with self._lock:
            return [
                handler_id
                for handler_id, (name, _) in self._handlers.items()
                if event_name is None or name == tuple(event_name)
            ]

    def emit(self, event: TelemetryEvent) -> None:
        """Deliver ``event`` to every handler attached to its name."""
        with self._lock:
            targets = [
                (handler_id, handler)
                for handler_id, (name, handler) in self._handlers.items()
                if name == event.name
            ]

        for handler_id, handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("Telemetry handler %r failed and was detached", handler_id)
                self.detach(handler_id)


default_emitter = TelemetryEmitter()


def attach(handler_id: str, event_name: EventName, handler: Handler) -> None:
    """Attach a handler to the process-wide emitter."""
    default_emitter.attach(handler_id, event_name, handler)


def detach(handler_id: str) -> bool:
    """Detach a handler from the process-wide emitter."""
    return default_emitter.detach(handler_id)


def emit(event: TelemetryEvent) -> None:
    """Emit an event on the process-wide emitter."""
    default_emitter.emit(event)
