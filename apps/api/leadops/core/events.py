import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger("leadops.events")


@dataclass
class DomainEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[DomainEvent], None]


class InProcessEventBus:
    """Synchronous fan-out to subscribers after a mutation has been committed.

    A failing subscriber is logged and skipped; it never reaches the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = DomainEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(event)
            except Exception as exc:
                logger.exception("event_subscriber_failed", extra={"event_name": event_name, "error": str(exc)[:500]})

    def clear(self) -> None:
        self._subscribers.clear()


event_bus = InProcessEventBus()
