"""
EventBus for in-process pub/sub event streaming.

Makes local authoritative state observable: the reconciliation engine and the
maintenance jobs publish typed events, the UI (or the CLI) subscribes.

Usage:
    bus = EventBus()

    # Subscribe to specific event types
    bus.subscribe('record.saved', lambda event: print(f"Saved: {event.key}"))
    bus.subscribe('sync.refreshed', redraw_calendar)

    # Subscribe to all events
    bus.subscribe('*', lambda event: log_event(event))

    # Publish events
    from schedsync.events import RecordSavedEvent
    bus.publish(RecordSavedEvent(kind="schedule", key="2025-09-05", storage_id="abc"))
"""

from typing import Callable, Dict, List, Any, Optional
from threading import Lock
import logging

logger = logging.getLogger(__name__)

WILDCARD = '*'


class EventBus:
    """
    Thread-safe in-process event bus for pub/sub.

    Callbacks run synchronously in the publisher's thread. A failing callback
    is logged and never affects the publisher or other subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to listen for (e.g., 'record.saved')
                       Use '*' to subscribe to all event types
            callback: Function called with the event object
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to {event_type}: {getattr(callback, '__name__', 'lambda')}")

    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> bool:
        """
        Unsubscribe a callback from an event type.

        Returns:
            True if callback was found and removed, False otherwise
        """
        with self._lock:
            callbacks = self._subscribers.get(event_type)
            if not callbacks or callback not in callbacks:
                return False
            callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[event_type]
        logger.debug(f"Unsubscribed from {event_type}")
        return True

    def publish(self, event: Any) -> None:
        """
        Publish an event to its specific subscribers, then wildcard ones.

        Args:
            event: Event object (must have an 'event_type' attribute)
        """
        event_type = getattr(event, 'event_type', None)
        if event_type is None:
            logger.warning(f"Event missing 'event_type' attribute: {type(event).__name__}")
            return

        # copy under the lock, call outside it
        with self._lock:
            callbacks = list(self._subscribers.get(event_type, []))
            callbacks += self._subscribers.get(WILDCARD, [])

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber callback for {event_type}: {e}", exc_info=True)

        logger.debug(f"Published {event_type} to {len(callbacks)} subscribers")

    def clear(self) -> None:
        """Remove all subscriptions."""
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        """Number of subscribers for one event type, or in total."""
        with self._lock:
            if event_type:
                return len(self._subscribers.get(event_type, []))
            return sum(len(subs) for subs in self._subscribers.values())


_global_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create the process-wide EventBus."""
    global _global_bus
    if _global_bus is None:
        _global_bus = EventBus()
    return _global_bus


def reset_event_bus() -> None:
    """Replace the process-wide EventBus with a fresh one (tests)."""
    global _global_bus
    _global_bus = EventBus()


__all__ = ['EventBus', 'get_event_bus', 'reset_event_bus', 'WILDCARD']
