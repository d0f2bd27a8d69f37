"""
Synchronous publish/subscribe for monitoring state transitions.

Observers (UI bridges, loggers, the HTTP layer) subscribe by event name.
A failing observer never affects the emitter or the other observers.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set


EventCallback = Callable[[Any], Any]


class MonitorEvent:
    """Event names emitted by the engine."""

    # Connection supervision
    CONNECTED = "connected"
    CONNECTION_FAILED = "connection-failed"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    RECONNECTION_FAILED = "reconnection-failed"
    HEALTH_CHECK_FAILED = "health-check-failed"
    DISCONNECTED = "disconnected"
    HEALTH_UPDATED = "health:updated"

    # Transactions
    TRANSACTION_STARTED = "transaction:started"
    TRANSACTION_CONFIRMED = "transaction:confirmed"
    TRANSACTION_RETRYING = "transaction:retrying"
    TRANSACTION_FAILED = "transaction:failed"

    # Metrics and errors
    METRICS_UPDATED = "metrics:updated"
    ERROR_REPORTED = "error:reported"


class EventBus:
    """
    Per-event callback registry.

    Usage:
        bus = EventBus()
        bus.on(MonitorEvent.TRANSACTION_CONFIRMED, my_callback)
        bus.emit(MonitorEvent.TRANSACTION_CONFIRMED, tx)
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._listeners: Dict[str, List[EventCallback]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: str, callback: EventCallback) -> None:
        """Register a callback; registering the same one twice is a no-op."""
        callbacks = self._listeners.setdefault(event, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        callbacks = self._listeners.get(event)
        if not callbacks:
            return
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> None:
        # Copy so callbacks may subscribe/unsubscribe while we iterate
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    self._schedule(event, result)
            except Exception as e:
                self.logger.error(f"Error in event listener for {event}: {e}", exc_info=True)

    def _schedule(self, event: str, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self.logger.warning(f"Dropped async listener for {event}: no running loop")
            return

        task = loop.create_task(coro)
        self._pending.add(task)

        def _report(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self.logger.error(f"Async listener for {event} failed: {t.exception()}")

        task.add_done_callback(_report)
