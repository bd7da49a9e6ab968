import logging
from typing import Any, Callable, Dict, List, Optional

_LOGGER = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class EventBus:
    """A simple synchronous publish/subscribe event bus."""

    def __init__(self):
        # Listeners per topic, called in subscription order
        self.topics: Dict[str, List[Listener]] = {}

    def subscribe(self, topic: str, listener: Listener) -> None:
        """
        Subscribes a listener to a topic.
        """
        if topic not in self.topics:
            self.topics[topic] = []
        self.topics[topic].append(listener)

    def unsubscribe(self, topic: str, listener: Listener) -> None:
        """
        Removes a listener from a topic. Unknown listeners are ignored.
        """
        listeners = self.topics.get(topic)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self.topics[topic]

    def publish(self, topic: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Publishes an event to all subscribed listeners.
        """
        if data is None:
            data = {}

        data['__topic'] = topic

        # Copy so a listener may unsubscribe itself while being called
        listeners = list(self.topics.get(topic, []))
        for listener in listeners:
            try:
                listener(data)
            except Exception:
                _LOGGER.exception("Error in event listener for topic %s", topic)

# Client helpers for subscriptions

def subscribe(func: Callable) -> Callable:
    """Decorator to mark a method for event bus subscription."""
    func._event_bus_subscribe = True
    return func

class EventHandler:
    """
    A base class for components that subscribe to events.

    Every method decorated with @subscribe is bound to the topic of the
    same name, e.g. a ``paused`` method receives the ``paused`` event.
    """
    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._subscribe_all_methods()

    def _subscribe_all_methods(self):
        """Finds and subscribes all methods decorated with @subscribe."""
        for method_name in dir(self):
            method = getattr(self, method_name)

            if hasattr(method, '_event_bus_subscribe'):
                self.event_bus.subscribe(method_name, method)
                _LOGGER.debug("Subscribed method '%s' to topic '%s'", method_name, method_name)

    def unsubscribe_all(self) -> None:
        """Detaches every @subscribe method from the bus."""
        for method_name in dir(self):
            method = getattr(self, method_name)

            if hasattr(method, '_event_bus_subscribe'):
                self.event_bus.unsubscribe(method_name, method)
