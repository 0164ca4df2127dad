"""
toolcore.execution.events - Execution Event Bus

Publish/subscribe channel for execution progress, status, error and
completion notifications. Listeners are plain callables invoked
synchronously in subscription order; a failing listener is logged and
never affects the execution or other listeners.
"""

import logging
from collections.abc import Callable

from .models import ExecutionEventType, ExecutionUpdate

logger = logging.getLogger(__name__)

ExecutionListener = Callable[[ExecutionUpdate], None]


class ExecutionEventBus:
    """
    Observer registry for ExecutionUpdate notifications.

    Example:
        >>> bus = ExecutionEventBus()
        >>> unsubscribe = bus.subscribe(print, ExecutionEventType.COMPLETED)
        >>> ...
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        # None key holds listeners for every event type
        self._listeners: dict[ExecutionEventType | None, list[ExecutionListener]] = {}

    def subscribe(
        self,
        listener: ExecutionListener,
        event_type: ExecutionEventType | None = None,
    ) -> Callable[[], None]:
        """Register listener for one event type (or all when None).

        Returns:
            Callable that removes the subscription
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def publish(self, update: ExecutionUpdate) -> None:
        listeners = [*self._listeners.get(update.type, []), *self._listeners.get(None, [])]
        for listener in listeners:
            try:
                listener(update)
            except Exception:
                logger.error(
                    f"Execution listener failed for {update.type}",
                    exc_info=True,
                    extra={"tool_call_id": update.tool_call_id, "event_type": update.type},
                )

    def listener_count(self, event_type: ExecutionEventType | None = None) -> int:
        return len(self._listeners.get(event_type, []))

    def clear(self) -> None:
        self._listeners.clear()
