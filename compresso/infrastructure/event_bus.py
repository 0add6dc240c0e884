import logging
from typing import Type, Callable, List, Dict, Any
from compresso.domain.events import Event


class EventBus:
    """A simple synchronous event bus for decoupled communication."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        """Subscribes a callback to an event type and all of its subclasses."""
        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers.

        A failing subscriber is logged and skipped so presentation bugs never
        abort a running encode.
        """
        for event_type in type(event).__mro__:
            for callback in self._subscribers.get(event_type, []):
                try:
                    callback(event)
                except Exception as e:
                    self.logger.error(f"EVENT_HANDLER_FAILED: {type(event).__name__} -> {callback!r}: {e}")
