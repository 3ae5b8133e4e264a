from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
import logging


logger = logging.getLogger("agency_core.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        self._subscribers[event_name].append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event_name: str, payload: dict[str, Any] | None = None) -> None:
        event = InternalEvent(name=event_name, payload=payload or {})
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(event)
            except Exception as exc:
                logger.exception("event_handler_failed", extra={"reason": event_name, "error": str(exc)})
