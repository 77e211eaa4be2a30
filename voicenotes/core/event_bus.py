"""Event bus for inter-component communication."""

import asyncio
from collections import defaultdict
from typing import Any, Callable, Dict, List
import logging


logger = logging.getLogger(__name__)

# Event types published by the core
PROVIDER_CHANGE = "provider_change"
PIPELINE_STATE = "pipeline_state"


class EventBus:
    """Event bus for publishing and subscribing to events."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type (e.g., "provider_change", "pipeline_state")
            callback: Async or sync callback function
        """
        self._subscribers[event_type].append(callback)
        logger.debug(f"Subscribed to {event_type}: {getattr(callback, '__name__', callback)}")

    def unsubscribe(self, event_type: str, callback: Callable):
        """Unsubscribe from events."""
        if callback in self._subscribers[event_type]:
            self._subscribers[event_type].remove(callback)
            logger.debug(f"Unsubscribed from {event_type}: {getattr(callback, '__name__', callback)}")

    def subscriber_count(self, event_type: str) -> int:
        return len(self._subscribers[event_type])

    async def publish(self, event_type: str, data: Any):
        """
        Publish an event to all subscribers.

        Callback errors are logged and never propagate to the publisher.

        Args:
            event_type: Event type
            data: Event data
        """
        callbacks = self._subscribers[event_type].copy()

        for callback in callbacks:
            try:
                result = callback(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event callback {getattr(callback, '__name__', callback)}: {e}", exc_info=True)


# Process-wide default bus, used when no bus is injected
event_bus = EventBus()
