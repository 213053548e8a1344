import logging
from typing import Any, Callable, Dict, List, Optional

_LOGGER = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class EventBus:
    """A simple synchronous publish/subscribe event bus.

    Senders publish `sender_status`, `sender_output` and `sender_error`
    here; host boundaries (MQTT, CLI) subscribe.
    """

    def __init__(self) -> None:
        self.topics: Dict[str, List[Listener]] = {}

    def subscribe(self, topic: str, listener: Listener) -> None:
        self.topics.setdefault(topic, []).append(listener)

    def unsubscribe(self, topic: str, listener: Listener) -> None:
        listeners = self.topics.get(topic, [])
        if listener in listeners:
            listeners.remove(listener)

    def publish(self, topic: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Publishes an event to all subscribed listeners.

        A failing listener is logged and does not stop delivery to the rest.
        """
        payload = dict(data or {})
        payload["__topic"] = topic

        for listener in list(self.topics.get(topic, [])):
            try:
                listener(payload)
            except Exception:
                _LOGGER.exception("Error in event listener for topic %s", topic)


def subscribe(func: Callable) -> Callable:
    """Decorator to mark a method for event bus subscription."""
    func._event_bus_subscribe = True
    return func


class EventHandler:
    """
    A base class for components that subscribe to events.

    Every method decorated with @subscribe is registered on the topic named
    after the method.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus
        self._subscriptions: List[tuple] = []
        self._subscribe_all_methods()

    def _subscribe_all_methods(self) -> None:
        for method_name in dir(self):
            if method_name.startswith("__"):
                continue
            method = getattr(self, method_name)
            if getattr(method, "_event_bus_subscribe", False):
                self.event_bus.subscribe(method_name, method)
                self._subscriptions.append((method_name, method))
                _LOGGER.debug("Subscribed method '%s' to topic '%s'", method_name, method_name)

    def unsubscribe_all(self) -> None:
        for topic, method in self._subscriptions:
            self.event_bus.unsubscribe(topic, method)
        self._subscriptions.clear()
