# Event Bus for JPEL Runner
# Synchronous publish/subscribe for execution events

import logging
from typing import Callable, Dict, List, Optional, Type, TypeVar

from .execution_events import ExecutionEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=ExecutionEvent)

EventHandler = Callable[[ExecutionEvent], None]


class ExecutionEventBus:
    """Synchronous event bus for execution events.

    The engine publishes one event per observable transition (activity
    started/completed/failed, human task created, instance status change).
    Subscribers such as the audit repository are invoked immediately and
    in subscription order, which keeps the event stream deterministic.

    Example usage:

        bus = ExecutionEventBus()

        def on_failed(event: ActivityFailedEvent):
            print(f"{event.activity_id} failed: {event.error}")

        bus.subscribe(ActivityFailedEvent, on_failed)
    """

    def __init__(self):
        self._subscribers: Dict[Type[ExecutionEvent], List[EventHandler]] = {}
        self._global_subscribers: List[EventHandler] = []

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        """Subscribe a handler to a specific event type.

        Args:
            event_type: The type of event to subscribe to
            handler: Callable invoked with each published event of that type
        """
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug(f"Subscribed {handler.__name__} to {event_type.__name__}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to every event type (audit, debugging)."""
        if handler not in self._global_subscribers:
            self._global_subscribers.append(handler)
            logger.debug(f"Subscribed {handler.__name__} to all events")

    def unsubscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> bool:
        """Remove a handler; returns False if it was not subscribed."""
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        if handler in self._global_subscribers:
            self._global_subscribers.remove(handler)
            return True
        return False

    def publish(self, event: ExecutionEvent) -> None:
        """Publish an event to global subscribers, then typed subscribers.

        Handler errors are logged and re-raised to the publisher.

        Args:
            event: The event to publish
        """
        event_type = type(event)
        logger.debug(f"Publishing {event_type.__name__}: {event}")

        for handler in list(self._global_subscribers) + list(
            self._subscribers.get(event_type, [])
        ):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in handler {handler.__name__} for {event_type.__name__}: {e}"
                )
                raise

    def get_subscriber_count(self, event_type: Optional[Type[ExecutionEvent]] = None) -> int:
        """Count subscribers for one event type, or across all types."""
        if event_type is not None:
            return len(self._subscribers.get(event_type, [])) + len(self._global_subscribers)
        return len(self._global_subscribers) + sum(
            len(handlers) for handlers in self._subscribers.values()
        )

    def clear(self) -> None:
        self._subscribers.clear()
        self._global_subscribers.clear()
        logger.debug("Cleared all event subscribers")


# Shared bus used by the default engine
_event_bus_instance: Optional[ExecutionEventBus] = None


def get_event_bus() -> ExecutionEventBus:
    """Get the shared event bus instance, creating it on first use."""
    global _event_bus_instance
    if _event_bus_instance is None:
        _event_bus_instance = ExecutionEventBus()
    return _event_bus_instance


def reset_event_bus() -> None:
    """Replace the shared event bus with a fresh one (useful for testing)."""
    global _event_bus_instance
    _event_bus_instance = ExecutionEventBus()
